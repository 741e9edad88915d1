'''
Node launcher: starts the serving container on every worker over SSH and
then on the local head node (rank 0).
'''

import os
import shlex
import threading
import time
from concurrent.futures import Future, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from sparkctl.lib import globals
from sparkctl.lib import docker_lib
from sparkctl.lib import linux_utils
from sparkctl.lib.docker_lib import DockerRunCommand
from sparkctl.lib.local_shell_lib import LocalShell
from sparkctl.lib.parallel_ssh_lib import Pssh
from sparkctl.lib.utils_lib import (
    RemoteUnreachableError,
    print_msg,
    print_warning,
    single_output,
)

log = globals.log

TIKTOKEN_BASE_URL = 'https://openaipublic.blob.core.windows.net/encodings'
TIKTOKEN_ENCODINGS = ['o200k_base', 'cl100k_base']

CONTAINER_HF_HOME = '/root/.cache/huggingface'
CONTAINER_TIKTOKEN_DIR = '/tiktoken_encodings'

SSH_PROBE_TIMEOUT = 5
WORKER_SETTLE_DELAY = 5
WORKER_JOIN_TIMEOUT = 600


class ServerArgsBuilder():
    """
    Ordered (flag, value) pairs for `python3 -m sglang.launch_server`.
    A value of None marks a boolean flag.
    """

    def __init__(self):
        self.pairs = []

    def add(self, flag, value=None):
        self.pairs.append((flag, value))
        return self

    def add_if(self, condition, flag, value=None):
        if condition:
            self.add(flag, value)
        return self

    def extend_raw(self, tokens):
        """Append already tokenized free-form flags (EXTRA_ARGS)."""
        for token in tokens:
            self.pairs.append((token, None))
        return self

    def flags(self):
        return [flag for flag, _ in self.pairs]

    def to_argv(self):
        argv = ['python3', '-m', 'sglang.launch_server']
        for flag, value in self.pairs:
            argv.append(flag)
            if value is not None:
                argv.append(str(value))
        return argv

    @classmethod
    def for_rank(cls, settings, spec, rank):
        builder = cls()
        builder.add('--model-path', spec.model)
        builder.add('--tp', spec.tensor_parallel)
        builder.add('--pp-size', spec.pipeline_parallel)
        builder.add('--nnodes', spec.num_nodes)
        builder.add('--node-rank', rank)
        builder.add('--dist-init-addr', spec.dist_init_addr)
        builder.add('--host', '0.0.0.0')
        builder.add('--port', settings.sglang_port)
        builder.add('--mem-fraction-static', f'{spec.mem_fraction:.2f}')
        builder.add_if(settings.effective_reasoning_parser, '--reasoning-parser', settings.effective_reasoning_parser)
        builder.add_if(settings.effective_tool_call_parser, '--tool-call-parser', settings.effective_tool_call_parser)
        builder.add_if(settings.disable_cuda_graph, '--disable-cuda-graph')
        builder.extend_raw(shlex.split(settings.extra_args or ''))
        return builder


@dataclass
class NodeLaunchRequest:
    """Everything needed to start one node; discarded after the launch is issued."""
    rank: int
    run_cmd: DockerRunCommand
    host: Optional[str] = None
    user: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    tiktoken_dir: Optional[str] = None

    @property
    def is_local(self):
        return self.host is None


@dataclass
class LaunchResult:
    spec: object
    # (rank, host) in the order launches were issued; host None is local
    issue_order: List[tuple] = field(default_factory=list)
    head_request: Optional[NodeLaunchRequest] = None
    worker_requests: Dict[int, NodeLaunchRequest] = field(default_factory=dict)
    worker_errors: Dict[int, str] = field(default_factory=dict)
    abandoned_ranks: List[int] = field(default_factory=list)
    # worker launch Future -> rank, until join_workers() collects them
    pending: Dict[Future, int] = field(default_factory=dict)


def submit_daemon( fn, *args, name=None ):
    """
    Run fn(*args) on a daemon thread and return a Future for its outcome.
    The thread does not hold up interpreter exit, so a worker launch that
    is abandoned after the readiness verdict never blocks the CLI.
    """
    future = Future()

    def _run():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=_run, name=name, daemon=True).start()
    return future


def container_env( settings, env_overrides ):
    """
    Container environment as ordered (key, value) pairs. HF_TOKEN is passed
    through by name, its value travels in the exec environment.
    """
    env = [
        ('HF_TOKEN', None),
        ('HF_HOME', CONTAINER_HF_HOME),
        ('TIKTOKEN_ENCODINGS_BASE', CONTAINER_TIKTOKEN_DIR),
        ('NCCL_DEBUG', settings.nccl_debug),
        ('NCCL_IB_DISABLE', settings.nccl_ib_disable),
        ('NCCL_NET_GDR_LEVEL', settings.nccl_net_gdr_level),
        ('NCCL_TIMEOUT', settings.nccl_timeout),
    ]
    for key in ['NCCL_SOCKET_IFNAME', 'GLOO_SOCKET_IFNAME', 'NCCL_IB_HCA']:
        if env_overrides.get(key):
            env.append((key, env_overrides[key]))
    return env


def build_run_command( settings, spec, rank, container_name, tiktoken_dir, env_overrides, has_infiniband ):
    run_cmd = DockerRunCommand(
        name=container_name,
        image=settings.image,
        shm_size=settings.shm_size,
        command=ServerArgsBuilder.for_rank(settings, spec, rank).to_argv(),
    )
    if has_infiniband:
        run_cmd.add_device('/dev/infiniband')
    run_cmd.add_volume(settings.hf_cache, CONTAINER_HF_HOME)
    run_cmd.add_volume(tiktoken_dir, CONTAINER_TIKTOKEN_DIR)
    for key, value in container_env(settings, env_overrides):
        run_cmd.add_env(key, value)
    return run_cmd


def provision_tiktoken( tiktoken_dir, session=None, timeout=60 ):
    """
    Download the tiktoken encodings the gpt-oss tokenizer needs into
    tiktoken_dir when missing. A failed download is a warning only.
    Returns the list of encodings that are present afterwards.
    """
    session = session or requests
    os.makedirs(tiktoken_dir, exist_ok=True)
    present = []
    for encoding in TIKTOKEN_ENCODINGS:
        file_path = os.path.join(tiktoken_dir, f'{encoding}.tiktoken')
        if os.path.isfile(file_path):
            present.append(encoding)
            continue
        print_msg(f'  Downloading {encoding}.tiktoken...')
        try:
            resp = session.get(f'{TIKTOKEN_BASE_URL}/{encoding}.tiktoken', timeout=timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            print_warning(f'Failed to download {encoding}.tiktoken: {e}')
            continue
        with open(file_path, 'wb') as fp:
            fp.write(resp.content)
        present.append(encoding)
    return present


def remote_tiktoken_script( tiktoken_dir ):
    lines = [f'mkdir -p {tiktoken_dir}']
    for encoding in TIKTOKEN_ENCODINGS:
        target = f'{tiktoken_dir}/{encoding}.tiktoken'
        lines.append(f'[ -f {target} ] || curl -fsSL -o {target} {TIKTOKEN_BASE_URL}/{encoding}.tiktoken || true')
    return '; '.join(lines)


def default_remote_factory( settings ):
    def _factory(host, user):
        return Pssh(log, [host], user=user, pkey=settings.ssh_pkey, verbose=False)
    return _factory



class ClusterLauncher():
    """
    Issue the start command for every rank.

    Workers are launched first, one thread-pool task each, in increasing
    rank order. The head (rank 0) is started locally after all worker tasks
    have been submitted and a short settle delay. Every worker is probed
    over SSH before any container is touched.
    """

    def __init__(self, settings, spec, network=None, local_hdl=None, remote_factory=None,
            sleep=time.sleep, settle_delay=WORKER_SETTLE_DELAY, join_timeout=WORKER_JOIN_TIMEOUT,
            tiktoken_session=None):
        self.settings = settings
        self.spec = spec
        self.network = network
        self.local_hdl = local_hdl or LocalShell()
        self.remote_factory = remote_factory or default_remote_factory(settings)
        self.sleep = sleep
        self.settle_delay = settle_delay
        self.join_timeout = join_timeout
        self.tiktoken_session = tiktoken_session
        self.remote_hdls = {}


    def exec_env(self):
        if self.settings.hf_token:
            return {'HF_TOKEN': self.settings.hf_token}
        return {'HF_TOKEN': ''}


    def probe_workers(self):
        """
        Bounded connect-and-echo probe of every worker.
        Raises RemoteUnreachableError on the first unreachable one.
        """
        for worker in self.spec.workers:
            hdl = self.remote_factory(worker.host, self.spec.worker_user)
            unreachable = hdl.check_connectivity([worker.host], timeout=SSH_PROBE_TIMEOUT)
            if unreachable:
                target = f'{self.spec.worker_user}@{worker.host}'
                raise RemoteUnreachableError(f'Cannot SSH to {target}. Check SSH keys and connectivity.',
                    remediation=f'Test with: ssh -o ConnectTimeout=5 -o BatchMode=yes {target} "echo ok"')
            self.remote_hdls[worker.rank] = hdl
            print_msg(f'  SSH to {target_of(self.spec, worker)} ok')


    def build_worker_request(self, worker, hdl):
        """
        Gather the worker's hostname, home directory and network settings
        and build its launch request.
        """
        out = single_output(hdl.exec('hostname -s; echo $HOME'))
        lines = [line.strip() for line in out.split('\n') if line.strip()]
        hostname = lines[0] if lines else worker.host
        home = lines[1] if len(lines) > 1 else '/root'
        network = linux_utils.detect_network(hdl)
        env_overrides = {
            'NCCL_SOCKET_IFNAME': network.interface,
            'GLOO_SOCKET_IFNAME': network.interface,
            'NCCL_IB_HCA': network.hca_list,
        }
        tiktoken_dir = f'{home}/tiktoken_encodings'
        run_cmd = build_run_command(self.settings, self.spec, worker.rank,
            f'{self.settings.worker_container_name}-{hostname}', tiktoken_dir,
            env_overrides, network.has_infiniband)
        return NodeLaunchRequest(rank=worker.rank, run_cmd=run_cmd, host=worker.host,
            user=self.spec.worker_user, env=self.exec_env(), tiktoken_dir=tiktoken_dir)


    def launch_worker(self, worker, skip_pull):
        hdl = self.remote_hdls[worker.rank]
        request = self.build_worker_request(worker, hdl)
        docker_lib.remove_container(hdl, request.run_cmd.name)
        if not skip_pull:
            hdl.exec(f'docker pull {shlex.quote(self.settings.image)} >/dev/null 2>&1 || true', timeout=60*30)
        hdl.exec(remote_tiktoken_script(request.tiktoken_dir), timeout=120)
        docker_lib.launch_docker_container(hdl, request.run_cmd, env=request.env)
        print_msg(f'  Worker {request.run_cmd.name} started on {worker.host} (node-rank {worker.rank})')
        return request


    def build_head_request(self):
        has_infiniband = self.network.has_infiniband if self.network else False
        run_cmd = build_run_command(self.settings, self.spec, 0, self.settings.head_container_name,
            self.settings.tiktoken_dir, self.spec.env_overrides, has_infiniband)
        return NodeLaunchRequest(rank=0, run_cmd=run_cmd, env=self.exec_env(),
            tiktoken_dir=self.settings.tiktoken_dir)


    def launch(self, skip_pull=False):
        """
        Launch the whole cluster. Returns a LaunchResult whose issue_order
        lists the launches in the order they were issued (workers by rank,
        then the head). Worker launches keep running in the background and
        are left in result.pending for join_workers(); the caller can start
        polling the head as soon as this returns.

        Raises RemoteUnreachableError before anything is started, and
        LaunchError when the head container is rejected.
        """
        result = LaunchResult(spec=self.spec)

        if self.spec.workers:
            print_msg('Checking SSH connectivity to workers')
            self.probe_workers()

        if not skip_pull:
            print_msg('Pulling Docker image on head node')
            docker_lib.pull_image(self.local_hdl, self.settings.image)
        else:
            print_msg('Skipping Docker pull (--skip-pull)')

        print_msg('Setting up tiktoken encodings')
        provision_tiktoken(self.settings.tiktoken_dir, session=self.tiktoken_session)

        print_msg('Cleaning up old head container')
        docker_lib.remove_container(self.local_hdl, self.settings.head_container_name)

        if self.spec.workers:
            print_msg('Starting workers via SSH')
        for worker in self.spec.workers:
            print_msg(f'  Starting worker at {worker.host} (IB: {worker.fabric_ip}, node-rank {worker.rank})...')
            future = submit_daemon(self.launch_worker, worker, skip_pull, name=f'worker-rank-{worker.rank}')
            result.pending[future] = worker.rank
            result.issue_order.append((worker.rank, worker.host))
        if result.pending:
            print_msg('  Waiting for workers to initialize...')
            self.sleep(self.settle_delay)

        print_msg('Starting head node (node-rank 0)')
        head_request = self.build_head_request()
        result.head_request = head_request
        result.issue_order.append((0, None))
        docker_lib.launch_docker_container(self.local_hdl, head_request.run_cmd, env=head_request.env)
        print_msg('  Head container started')
        return result


    def join_workers(self, result, timeout=None):
        """
        Collect the worker launches of a LaunchResult, waiting at most
        timeout (join_timeout by default). Called once readiness has a
        verdict. Tasks still pending are abandoned with a warning, failed
        ones are recorded in result.worker_errors.
        """
        futures = result.pending
        if not futures:
            return result
        timeout = self.join_timeout if timeout is None else timeout
        done, not_done = wait(list(futures.keys()), timeout=timeout)
        result.pending = {}
        for future in not_done:
            rank = futures[future]
            result.abandoned_ranks.append(rank)
            print_warning(f'Worker launch for node-rank {rank} still pending after {timeout}s, not waiting for it')
        for future in done:
            rank = futures[future]
            exc = future.exception()
            if exc is not None:
                message = getattr(exc, 'message', str(exc))
                result.worker_errors[rank] = message
                print_warning(f'Worker node-rank {rank} failed to launch: {message}')
                log.error(f'worker rank {rank}: {exc!r}')
            else:
                result.worker_requests[rank] = future.result()
        return result


def target_of( spec, worker ):
    return f'{spec.worker_user}@{worker.host}'
