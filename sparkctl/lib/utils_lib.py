'''
Common helpers: timestamped operator messages and the sparkctl error hierarchy.
'''

import re
import sys
from datetime import datetime

from sparkctl.lib import globals

log = globals.log

BANNER_LINE = '━' * 77


class SparkctlError(Exception):
    """
    Base class for all fatal sparkctl errors.

    Every error carries a human readable message and an optional remediation
    text (usually a command the operator can run to investigate). The CLI
    layer prints both and exits non-zero; library code never exits.
    """

    def __init__(self, message, remediation=None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation


class ConfigurationError(SparkctlError):
    """Missing or inconsistent configuration, invalid selection."""


class RemoteUnreachableError(SparkctlError):
    """A worker's SSH channel did not answer the liveness probe."""


class LaunchError(SparkctlError):
    """The container runtime refused to start a node."""


class ReadinessError(SparkctlError):
    """The head container was observed dead while waiting for readiness."""



def timestamp():
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


def print_msg(msg):
    """
    Print an operator facing progress line prefixed with a timestamp and
    mirror it to the log file.
    """
    print(f'[{timestamp()}] {msg}')
    log.info(msg)


def print_warning(msg):
    print(f'[{timestamp()}] Warning: {msg}')
    log.warning(msg)
    globals.warning_list.append(msg)


def print_error(err):
    """
    Render a SparkctlError (or any exception) the way every fatal path does:
    a timestamped ERROR line on stderr followed by the remediation, if any.
    """
    message = getattr(err, 'message', str(err))
    print(f'[{timestamp()}] ERROR: {message}', file=sys.stderr)
    log.error(message)
    remediation = getattr(err, 'remediation', None)
    if remediation:
        print('', file=sys.stderr)
        print(remediation, file=sys.stderr)


def print_banner(title):
    print('')
    print(BANNER_LINE)
    print(f' {title}')
    print(BANNER_LINE)
    print('')


def scan_output_for_errors(out_dict, pattern='error|fail|cannot|denied'):
    """
    Scan per-host command output for failure indicators.

    Parameters:
      out_dict (dict): Mapping of host -> output string as returned by exec().
      pattern (str): Case-insensitive regex of failure indicators.

    Returns:
      dict: host -> first matching output line, only for hosts with a match.
    """
    err_dict = {}
    for host in out_dict.keys():
        for line in out_dict[host].split('\n'):
            if re.search(pattern, line, re.I):
                err_dict[host] = line.strip()
                break
    return err_dict


def single_output(out_dict):
    """Output of a handle that targets exactly one host ('' when empty)."""
    for host in out_dict.keys():
        return out_dict[host]
    return ''


def split_tokens(value):
    """Split a whitespace separated setting ("ip1 ip2") into a list."""
    if value is None:
        return []
    return str(value).split()
