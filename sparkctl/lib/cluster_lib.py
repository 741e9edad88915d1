'''
Cluster lifecycle: bring-up (resolve, launch, wait for readiness), stop,
and the operator summary printed at the end of a launch.
'''

import time

from sparkctl.lib import globals
from sparkctl.lib import docker_lib
from sparkctl.lib import linux_utils
from sparkctl.lib.launcher_lib import ClusterLauncher, default_remote_factory
from sparkctl.lib.local_shell_lib import LocalShell
from sparkctl.lib.readiness_lib import CleanExitPolicy, Verdict, build_head_poller, readiness_budget
from sparkctl.lib.topology_lib import resolve_topology
from sparkctl.lib.utils_lib import (
    ReadinessError,
    print_banner,
    print_msg,
    print_warning,
    split_tokens,
)

log = globals.log


def print_configuration( settings, spec ):
    print_msg('Configuration:')
    print_msg(f'  Model:             {spec.model}')
    print_msg(f'  Tensor Parallel:   {spec.tensor_parallel} (per node)')
    print_msg(f'  Pipeline Parallel: {spec.pipeline_parallel} (across nodes)')
    print_msg(f'  Nodes:             {spec.num_nodes}')
    print_msg(f'  Memory Fraction:   {spec.mem_fraction}')
    print_msg('Network:')
    print_msg(f'  Head IP:           {spec.head_ip}')
    print_msg(f'  API Port:          {settings.sglang_port}')
    print_msg(f'  Dist Init Port:    {spec.dist_init_port}')
    for worker in spec.workers:
        print_msg(f'  Worker {worker.rank}:          {worker.host} (SSH), {worker.fabric_ip} (NCCL)')


def start_cluster( settings, head_only=False, skip_pull=False, worker_host=None, worker_ib_ip=None,
        ready_timeout=None, clean_exit_policy=CleanExitPolicy.SOFT, local_hdl=None, remote_factory=None,
        sleep=time.sleep, cancel_event=None, print_summary=True ):
    """
    Resolve the topology, launch every node and wait for readiness.

    Returns the final ReadinessState. A READY or TIMED_OUT verdict returns
    normally (TIMED_OUT with a warning); FAILED raises ReadinessError.
    """
    local_hdl = local_hdl or LocalShell()
    print_banner('SGLang DGX Spark Cluster Startup')

    network = linux_utils.detect_network(local_hdl)
    spec = resolve_topology(settings, head_only=head_only, worker_host=worker_host,
        worker_ib_ip=worker_ib_ip, network=network)
    print_configuration(settings, spec)

    launcher = ClusterLauncher(settings, spec, network=network, local_hdl=local_hdl,
        remote_factory=remote_factory, sleep=sleep)
    launch_result = launcher.launch(skip_pull=skip_pull)

    budget = readiness_budget(spec.num_nodes, ready_timeout)
    print_msg(f'Waiting for cluster to be ready (up to {budget}s)')
    poller = build_head_poller(settings, spec.num_nodes, local_hdl, budget=budget,
        clean_exit_policy=clean_exit_policy, sleep=sleep, cancel_event=cancel_event)
    state = poller.run()
    # Workers launched in the background are only collected once the head has a verdict
    launcher.join_workers(launch_result)
    check_readiness_verdict(state, settings.head_container_name)

    if print_summary:
        print_cluster_summary(settings, spec, state.verdict == Verdict.READY, local_hdl)
    return state


def check_readiness_verdict( state, container_name ):
    if state.verdict == Verdict.READY:
        print_msg(f'  {state.message}')
    elif state.verdict == Verdict.FAILED:
        raise ReadinessError(state.message, remediation=f'Check: docker logs {container_name}')
    elif state.verdict == Verdict.TIMED_OUT:
        print_warning(f'{state.message}; the cluster was started but is not yet confirmed ready. '
            f'Check: docker logs -f {container_name}')
    elif state.verdict == Verdict.CANCELLED:
        print_warning('Readiness wait cancelled; containers were left running')


def stop_cluster( settings, head_only=False, local_hdl=None, remote_factory=None ):
    """
    Remove the head container and the worker container on every worker.
    Idempotent; unreachable workers are reported and skipped.
    """
    local_hdl = local_hdl or LocalShell()
    remote_factory = remote_factory or default_remote_factory(settings)
    print_msg('Stopping head container')
    docker_lib.remove_container(local_hdl, settings.head_container_name)
    if head_only:
        return
    for host in worker_hosts(settings):
        hdl = remote_factory(host, settings.worker_user)
        if hdl.check_connectivity([host], timeout=5):
            print_warning(f'Cannot SSH to {settings.worker_user}@{host}, worker container left as is')
            continue
        print_msg(f'Stopping worker container on {host}')
        prefix = settings.worker_container_name
        hdl.exec(f"docker ps -a --format '{{{{.Names}}}}' | grep '^{prefix}' | xargs -r docker rm -f >/dev/null 2>&1 || true")
    print_msg('Cluster stopped')


def worker_hosts( settings ):
    """Management addresses of the configured workers, positional fallback to fabric ones."""
    fabric_list = split_tokens(settings.fabric_addresses)
    mgmt_list = split_tokens(settings.worker_host)
    hosts = []
    for i, fabric_ip in enumerate(fabric_list):
        hosts.append(mgmt_list[i] if i < len(mgmt_list) else fabric_ip)
    return hosts


def print_cluster_summary( settings, spec, ready, hdl ):
    public_ip = linux_utils.get_public_ip(hdl) or spec.head_ip
    port = settings.sglang_port
    print_banner('SGLang Cluster is READY!' if ready else 'SGLang Cluster Started (still initializing)')
    print('Cluster Info:')
    print(f'  Nodes:         {spec.num_nodes} (1 head + {spec.num_nodes - 1} workers)')
    print(f'  Model:         {spec.model}')
    print(f'  TP:            {spec.tensor_parallel}')
    print('')
    print('API Endpoints:')
    print(f'  API:           http://{public_ip}:{port}/v1')
    print(f'  Health:        http://{public_ip}:{port}/health')
    print('')
    print('Quick Test:')
    print(f'  curl http://{public_ip}:{port}/v1/chat/completions \\')
    print("    -H 'Content-Type: application/json' \\")
    print(f'    -d \'{{"model":"{spec.model}","messages":[{{"role":"user","content":"Hello"}}]}}\'')
    print('')
    print('Benchmark:')
    print('  sparkctl bench quick')
    print('')
    print('Logs:')
    print(f'  docker logs -f {settings.head_container_name}')
    for worker in spec.workers:
        print(f'  ssh {spec.worker_user}@{worker.host} docker logs -f {settings.worker_container_name}-*')
    print('')
    print('Stop Cluster:')
    print('  sparkctl stop')
    if globals.warning_list:
        print('')
        print('Warnings:')
        for warning in globals.warning_list:
            print(f'  - {warning}')
    print('')
