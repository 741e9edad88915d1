'''
Network discovery on a node: InfiniBand/RoCE interface, HCA list and
IP addresses, by parsing `ibdev2netdev` and `ip` output.
'''

import re
from dataclasses import dataclass
from typing import List, Optional

from sparkctl.lib import globals
from sparkctl.lib.utils_lib import single_output

log = globals.log

PREFERRED_IF_PREFIX = 'enp1'

# Addresses never reported as the node's public address
NON_PUBLIC_PREFIXES = ('127.', '169.254.', '172.17.')


@dataclass(frozen=True)
class NetworkInfo:
    """What a node learned about its own fabric."""
    interface: Optional[str] = None
    ip_address: Optional[str] = None
    hca_list: Optional[str] = None
    has_infiniband: bool = False



def parse_ibdev2netdev( ibdev_out ):
    """
    Parse `ibdev2netdev` output into a list of dictionaries.

    A line looks like:
        mlx5_0 port 1 ==> enp1s0f0np0 (Up)

    Returns:
        list: [{'device': 'mlx5_0', 'port': '1', 'netdev': 'enp1s0f0np0', 'state': 'Up'}, ...]
        in output order.
    """
    dev_list = []
    pattern = r'^\s*(\S+)\s+port\s+(\d+)\s+==>\s+(\S+)\s+\((\w+)\)'
    for line in ibdev_out.split('\n'):
        match = re.search(pattern, line)
        if match:
            dev_list.append({
                'device': match.group(1),
                'port': match.group(2),
                'netdev': match.group(3),
                'state': match.group(4),
            })
    return dev_list


def is_port_up( dev ):
    return dev['state'].lower() == 'up'


def select_primary_interface( dev_list ):
    """
    Pick the socket interface for NCCL/Gloo among the Up devices: the first
    netdev whose name starts with enp1, else the first Up netdev.
    """
    up_list = [dev['netdev'] for dev in dev_list if is_port_up(dev)]
    if not up_list:
        return None
    for netdev in up_list:
        if netdev.startswith(PREFERRED_IF_PREFIX):
            return netdev
    return up_list[0]


def hca_list_from_devices( dev_list ):
    """Sorted, de-duplicated, comma separated list of Up HCA names."""
    devices = sorted(set(dev['device'] for dev in dev_list if is_port_up(dev)))
    if not devices:
        return None
    return ','.join(devices)


def parse_ipv4_address( ip_out ):
    """
    First IPv4 address from `ip -o addr show <if>` output, without the
    prefix length.
    """
    match = re.search(r'\binet\s+(\d+\.\d+\.\d+\.\d+)(?:/\d+)?', ip_out)
    if not match:
        return None
    return match.group(1)


def parse_public_ip( ip_out ):
    """
    First global IPv4 address from `ip -o -4 addr show` output, skipping
    loopback, link-local and the default docker bridge.
    """
    for addr in re.findall(r'\binet\s+(\d+\.\d+\.\d+\.\d+)', ip_out):
        if not addr.startswith(NON_PUBLIC_PREFIXES):
            return addr
    return None



def get_ibdev_list( hdl ):
    out = single_output(hdl.exec('ibdev2netdev 2>/dev/null'))
    return parse_ibdev2netdev(out)


def get_interface_ipv4( hdl, interface ):
    out = single_output(hdl.exec(f'ip -o -4 addr show {interface} 2>/dev/null'))
    return parse_ipv4_address(out)


def get_ib_hca_list( hdl, dev_list=None ):
    """
    HCA list from ibdev2netdev, falling back to the entries of
    /sys/class/infiniband when ibdev2netdev reports nothing Up.
    """
    if dev_list is None:
        dev_list = get_ibdev_list(hdl)
    hca_list = hca_list_from_devices(dev_list)
    if hca_list:
        return hca_list
    out = single_output(hdl.exec('ls -1 /sys/class/infiniband 2>/dev/null'))
    devices = sorted(line.strip() for line in out.split('\n') if line.strip())
    if not devices:
        return None
    return ','.join(devices)


def has_infiniband_device( hdl ):
    out = single_output(hdl.exec('test -e /dev/infiniband && echo present || echo absent'))
    return 'present' in out


def get_public_ip( hdl ):
    out = single_output(hdl.exec('ip -o -4 addr show 2>/dev/null'))
    return parse_public_ip(out)


def detect_network( hdl ):
    """
    Detect the fabric interface, its IPv4 address, the HCA list and whether
    /dev/infiniband exists on the node behind the handle.

    Nothing here is fatal; missing pieces are None and the caller decides.
    """
    dev_list = get_ibdev_list(hdl)
    interface = select_primary_interface(dev_list)
    ip_address = None
    if interface:
        ip_address = get_interface_ipv4(hdl, interface)
    else:
        log.warning('No Up InfiniBand/RoCE interface reported by ibdev2netdev')
    hca_list = get_ib_hca_list(hdl, dev_list)
    info = NetworkInfo(interface=interface, ip_address=ip_address, hca_list=hca_list,
        has_infiniband=has_infiniband_device(hdl))
    log.info(f'Detected network: {info}')
    return info
