'''
Host checks run before a launch: container runtime, GPU driver,
InfiniBand fabric, worker SSH reachability and the HF cache.
'''

import os
from dataclasses import dataclass

from sparkctl.lib import globals
from sparkctl.lib import docker_lib
from sparkctl.lib import linux_utils
from sparkctl.lib.utils_lib import single_output

log = globals.log

PASS = 'PASS'
WARN = 'WARN'
FAIL = 'FAIL'


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str
    detail: str = ''


def verify_docker_installed( hdl ):
    out = single_output(hdl.exec('command -v docker || echo missing'))
    if not out.strip() or out.strip().endswith('missing'):
        return CheckResult('docker installed', FAIL, 'docker binary not found in PATH')
    return CheckResult('docker installed', PASS, out.strip())


def verify_docker_running( hdl ):
    running = docker_lib.check_if_docker_client_running(hdl)
    if all(running.values()):
        return CheckResult('docker daemon', PASS, 'docker ps answered')
    return CheckResult('docker daemon', FAIL, 'docker daemon is not reachable (is the service started?)')


def verify_nvidia_smi( hdl ):
    """
    Parameters:
      hdl: shell handle with exec(cmd) -> {host: output}

    Returns:
      CheckResult: PASS with the GPU names when nvidia-smi lists at least one
      GPU, FAIL otherwise.
    """
    out = single_output(hdl.exec('nvidia-smi --query-gpu=name --format=csv,noheader 2>&1 || echo NVSMI_FAILED'))
    gpus = [line.strip() for line in out.splitlines() if line.strip()]
    if not gpus or 'NVSMI_FAILED' in out or 'not found' in out.lower():
        return CheckResult('nvidia-smi', FAIL, 'nvidia-smi failed or no GPU visible')
    return CheckResult('nvidia-smi', PASS, ', '.join(gpus))


def verify_infiniband( hdl ):
    """WARN rather than FAIL: single node serving works without the fabric."""
    if not linux_utils.has_infiniband_device(hdl):
        return CheckResult('infiniband', WARN, '/dev/infiniband not present, multi-node NCCL will fall back to sockets')
    dev_list = [dev for dev in linux_utils.get_ibdev_list(hdl) if linux_utils.is_port_up(dev)]
    if not dev_list:
        return CheckResult('infiniband', WARN, 'no InfiniBand port reported Up by ibdev2netdev')
    return CheckResult('infiniband', PASS,
        ', '.join(f'{dev["device"]} -> {dev["netdev"]}' for dev in dev_list))


def verify_worker_ssh( remote_factory, hosts, user ):
    results = []
    for host in hosts:
        hdl = remote_factory(host, user)
        unreachable = hdl.check_connectivity([host], timeout=5)
        if unreachable:
            results.append(CheckResult(f'ssh {user}@{host}', FAIL, 'unreachable (check keys and network)'))
        else:
            results.append(CheckResult(f'ssh {user}@{host}', PASS))
    return results


def verify_hf_cache( hf_cache ):
    if not os.path.isdir(hf_cache):
        parent = os.path.dirname(hf_cache.rstrip('/')) or '/'
        if os.access(parent, os.W_OK):
            return CheckResult('hf cache', WARN, f'{hf_cache} does not exist yet (will be created)')
        return CheckResult('hf cache', FAIL, f'{hf_cache} does not exist and {parent} is not writable')
    if not os.access(hf_cache, os.W_OK):
        return CheckResult('hf cache', FAIL, f'{hf_cache} is not writable')
    return CheckResult('hf cache', PASS, hf_cache)


def summarize( results ):
    """{PASS: n, WARN: n, FAIL: n} over a list of CheckResult."""
    counts = {PASS: 0, WARN: 0, FAIL: 0}
    for result in results:
        counts[result.status] += 1
    return counts
