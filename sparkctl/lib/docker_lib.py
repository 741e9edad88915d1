'''
Container runtime helpers.

All functions take an execution handle (LocalShell or Pssh) whose exec()
returns {host: output}; docker is always driven through its CLI.
'''

import re
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sparkctl.lib import globals
from sparkctl.lib.utils_lib import LaunchError, scan_output_for_errors, single_output

log = globals.log

DOCKER_ERROR_PATTERN = r'error|cannot|denied|unable to find image|no such'


@dataclass
class DockerRunCommand:
    """
    Typed builder for a `docker run` invocation.

    Flags are kept as structured data and only serialized to argv/shell text
    at the invocation boundary. Environment entries with a value of None are
    passed through from the caller's environment (`-e KEY`), which keeps
    secrets such as HF_TOKEN off the command line.
    """
    name: str
    image: str
    command: List[str] = field(default_factory=list)
    detach: bool = True
    restart: str = 'no'
    gpus: Optional[str] = 'all'
    network: str = 'host'
    ipc: str = 'host'
    shm_size: Optional[str] = None
    ulimits: List[str] = field(default_factory=lambda: ['memlock=-1', 'stack=67108864'])
    devices: List[str] = field(default_factory=list)
    volumes: List[Tuple[str, str]] = field(default_factory=list)
    env: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    remove: bool = False

    def add_env(self, key, value=None):
        self.env.append((key, value))
        return self

    def add_volume(self, src, dst):
        self.volumes.append((src, dst))
        return self

    def add_device(self, device):
        self.devices.append(device)
        return self

    def env_keys(self):
        return [key for key, _ in self.env]

    def to_argv(self):
        argv = ['docker', 'run']
        if self.detach:
            argv.append('-d')
        if self.remove:
            argv.append('--rm')
        if self.restart:
            argv += ['--restart', self.restart]
        argv += ['--name', self.name]
        if self.gpus:
            argv += ['--gpus', self.gpus]
        argv += ['--network', self.network]
        if self.shm_size:
            argv += ['--shm-size', self.shm_size]
        for ulimit in self.ulimits:
            argv += ['--ulimit', ulimit]
        argv.append(f'--ipc={self.ipc}')
        for device in self.devices:
            argv.append(f'--device={device}')
        for src, dst in self.volumes:
            argv += ['-v', f'{src}:{dst}']
        for key, value in self.env:
            argv += ['-e', key if value is None else f'{key}={value}']
        argv.append(self.image)
        argv += list(self.command)
        return argv

    def to_shell(self):
        return shlex.join(self.to_argv())



def remove_container( hdl, container_name ):
    """Force-remove a container; a missing container is not an error."""
    hdl.exec(f'docker rm -f {shlex.quote(container_name)} >/dev/null 2>&1 || true')


def pull_image( hdl, image, timeout=60*30 ):
    out_dict = hdl.exec(f'docker pull {shlex.quote(image)}', timeout=timeout)
    err_dict = scan_output_for_errors(out_dict, DOCKER_ERROR_PATTERN + '|abort')
    if err_dict:
        host, line = next(iter(err_dict.items()))
        raise LaunchError(f'Failed to pull image {image} on {host}: {line}',
            remediation=f'Check registry access: docker pull {image}')
    return out_dict


def check_if_docker_client_running( hdl ):
    """
    Returns {host: True/False} depending on whether `docker ps` answers with
    its table header.
    """
    status_dict = {}
    out_dict = hdl.exec('docker ps 2>&1')
    for node in out_dict.keys():
        status_dict[node] = bool(re.search('CONTAINER', out_dict[node]))
    return status_dict


def get_container_status( hdl, container_name ):
    """
    Raw docker state string of a container (running, exited, dead, created,
    restarting, ...) or 'not_found'.
    """
    name = shlex.quote(container_name)
    out = single_output(hdl.exec(f"docker inspect -f '{{{{.State.Status}}}}' {name} 2>/dev/null || echo not_found"))
    lines = [line.strip() for line in out.split('\n') if line.strip()]
    if not lines:
        return 'not_found'
    return lines[-1]


def get_container_exit_code( hdl, container_name ):
    name = shlex.quote(container_name)
    out = single_output(hdl.exec(f"docker inspect -f '{{{{.State.ExitCode}}}}' {name} 2>/dev/null"))
    match = re.search(r'(-?\d+)', out)
    if not match:
        return None
    return int(match.group(1))


def get_container_log_tail( hdl, container_name, lines=2 ):
    """Last non-empty line of the container's log, '' when there is none."""
    name = shlex.quote(container_name)
    out = single_output(hdl.exec(f'docker logs --tail {lines} {name} 2>&1'))
    log_lines = [line.strip() for line in out.split('\n') if line.strip()]
    if not log_lines:
        return ''
    return log_lines[-1]


def is_container_running( hdl, container_name ):
    out = single_output(hdl.exec("docker ps --format '{{.Names}}'"))
    return container_name in [line.strip() for line in out.split('\n')]


def launch_docker_container( hdl, run_cmd, env=None, timeout=120 ):
    """
    Issue a detached `docker run` and verify the runtime accepted it.

    Raises LaunchError when docker prints an error or the container is not
    listed as running right after the run command returns.
    """
    cmd = run_cmd.to_shell()
    log.info(f'cmd = {cmd}')
    out_dict = hdl.exec(cmd, timeout=timeout, env=env)
    err_dict = scan_output_for_errors(out_dict, DOCKER_ERROR_PATTERN + '|abort')
    if err_dict:
        host, line = next(iter(err_dict.items()))
        raise LaunchError(f'Container {run_cmd.name} was rejected on {host}: {line}',
            remediation=f'Check logs: docker logs {run_cmd.name}')
    if not is_container_running(hdl, run_cmd.name):
        raise LaunchError(f'Container {run_cmd.name} is not running after docker run',
            remediation=f'Check logs: docker logs {run_cmd.name}')
    return out_dict
