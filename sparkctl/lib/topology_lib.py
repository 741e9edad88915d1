'''
Topology resolution: turn settings and command line overrides into a
ClusterSpec with contiguous ranks and a rendezvous address.
'''

from sparkctl.lib import globals
from sparkctl.lib.utils_lib import ConfigurationError, print_warning, split_tokens
from sparkctl.schema.cluster import ClusterSpec, WorkerNode

log = globals.log


MISSING_WORKERS_REMEDIATION = '''Please set these environment variables (or add them to config.local.env):
  export WORKER_HOST="192.168.x.x"    # Ethernet IP for SSH
  export WORKER_IB_IP="169.254.x.x"   # InfiniBand IP for NCCL

Or start head only:
  sparkctl launch --head-only

To find worker IPs, run on the worker node:
  hostname -I                          # Shows all IPs
  ibdev2netdev && ip addr show <ib_if> # Shows IB interface IP'''


def pair_worker_addresses( fabric_list, mgmt_list, warnings ):
    """
    Pair fabric and management addresses positionally.

    A missing management entry falls back to the fabric address for that
    index; management entries beyond the fabric list are ignored.
    """
    if not mgmt_list and fabric_list:
        warnings.append(f'WORKER_HOST not set, using WORKER_IB_IP ({" ".join(fabric_list)}) for SSH')
    elif len(mgmt_list) > len(fabric_list):
        extra = mgmt_list[len(fabric_list):]
        warnings.append(f'Ignoring WORKER_HOST entries without a matching WORKER_IB_IP: {" ".join(extra)}')
    pairs = []
    for i, fabric_ip in enumerate(fabric_list):
        host = mgmt_list[i] if i < len(mgmt_list) else fabric_ip
        pairs.append((fabric_ip, host))
    return pairs


def build_env_overrides( settings, network=None ):
    """
    Socket interface and HCA settings, explicit values first, auto-detected
    values second. Keys without a value are left out.
    """
    interface = network.interface if network else None
    hca_list = network.hca_list if network else None
    overrides = {
        'NCCL_SOCKET_IFNAME': settings.nccl_socket_ifname or interface,
        'GLOO_SOCKET_IFNAME': settings.gloo_socket_ifname or interface,
        'NCCL_IB_HCA': settings.nccl_ib_hca or hca_list,
    }
    return {key: value for key, value in overrides.items() if value}


def resolve_topology( settings, head_only=False, worker_host=None, worker_ib_ip=None, network=None ):
    """
    Resolve the cluster topology.

    Parameters:
      settings (ClusterSettings): Layered configuration.
      head_only (bool): Start rank 0 only; workers are never contacted.
      worker_host (str): Management address override (space separated).
      worker_ib_ip (str): Fabric address override (space separated).
      network (NetworkInfo): Auto-detected head network, or None.

    Returns:
      ClusterSpec

    Raises:
      ConfigurationError: multi-node requested without worker addresses, or
        no head address configured or detectable. Raised before anything
        is launched.
    """
    warnings = []
    declared_nodes = settings.num_nodes
    fabric_list = split_tokens(worker_ib_ip if worker_ib_ip is not None else settings.fabric_addresses)
    mgmt_list = split_tokens(worker_host if worker_host is not None else settings.worker_host)

    if head_only:
        if declared_nodes > 1:
            log.info(f'Head-only run: starting rank 0 of {declared_nodes} without workers')
        pairs = []
        num_nodes = declared_nodes
    else:
        if declared_nodes > 1 and not fabric_list:
            raise ConfigurationError(
                f'This is a {declared_nodes}-node cluster but no worker IPs are configured '
                f'(WORKER_HOST / WORKER_IB_IP)', remediation=MISSING_WORKERS_REMEDIATION)
        pairs = pair_worker_addresses(fabric_list, mgmt_list, warnings)
        num_nodes = declared_nodes
        if pairs and len(pairs) != declared_nodes - 1:
            num_nodes = len(pairs) + 1
            warnings.append(f'NUM_NODES={declared_nodes} but {len(pairs)} worker IP(s) provided, '
                f'adjusting NUM_NODES to {num_nodes}')

    head_ip = settings.head_ip or (network.ip_address if network else None)
    if not head_ip:
        raise ConfigurationError('Could not auto-detect HEAD_IP',
            remediation='Set HEAD_IP in config.local.env, or check `ibdev2netdev` and `ip addr show` on this node')

    workers = tuple(WorkerNode(rank=rank, fabric_ip=fabric_ip, host=host)
        for rank, (fabric_ip, host) in enumerate(pairs, start=1))

    for warning in warnings:
        print_warning(warning)

    return ClusterSpec(
        num_nodes=num_nodes,
        declared_num_nodes=declared_nodes,
        head_ip=head_ip,
        dist_init_port=settings.dist_init_port,
        model=settings.model,
        tensor_parallel=settings.tensor_parallel,
        pipeline_parallel=settings.pipeline_parallel,
        mem_fraction=settings.mem_fraction,
        env_overrides=build_env_overrides(settings, network),
        workers=workers,
        worker_user=settings.worker_user or 'root',
        head_only=head_only,
        warnings=tuple(warnings),
    )
