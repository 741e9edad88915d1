'''
SSH command channel to worker nodes.

Wraps pssh's ParallelSSHClient so that every caller gets back a plain
dictionary of host -> combined stdout/stderr text.
'''

import shlex

from pssh.clients import ParallelSSHClient
from pssh.exceptions import Timeout, ConnectionError

from sparkctl.lib import globals

log = globals.log


def build_env_prefix(env_dict):
    """
    Render an environment mapping as an `export` statement that can be
    prepended to a remote shell program. Values are shell quoted.
    """
    if not env_dict:
        return ''
    pairs = ' '.join(f'{key}={shlex.quote(str(value))}' for key, value in env_dict.items())
    return f'export {pairs}; '


class Pssh():
    """
    ParallelSessions - Uses the pssh library to take parallel ssh sessions to
    hosts and execute commands.

    Authentication uses either a private key file (default) or a password.
    """

    def __init__(self, log, host_list, user=None, password=None, pkey='~/.ssh/id_rsa', host_key_check=False,
            stop_on_errors=True, connect_timeout=5, verbose=True ):

        self.log = log
        self.host_list = list(host_list)
        self.reachable_hosts = list(host_list)
        self.user = user
        self.pkey = pkey
        self.password = password
        self.host_key_check = host_key_check
        self.stop_on_errors = stop_on_errors
        self.connect_timeout = connect_timeout
        self.verbose = verbose
        self.unreachable_hosts = []
        self.client = self._new_client(self.reachable_hosts)


    def _new_client(self, hosts, **kwargs):
        if self.password is None:
            return ParallelSSHClient( hosts, user=self.user, pkey=self.pkey, keepalive_seconds=30, **kwargs )
        return ParallelSSHClient( hosts, user=self.user, password=self.password, keepalive_seconds=30, **kwargs )


    def check_connectivity(self, hosts=None, timeout=None):
        """
        Short connect-and-echo liveness probe.

        Uses a throw-away client with no retries and a bounded connect/read
        timeout so an unreachable host fails fast.
        Returns a list of unreachable hosts.
        """
        if hosts is None:
            hosts = self.host_list
        if not hosts:
            return []
        timeout = timeout or self.connect_timeout
        temp_client = self._new_client(hosts, num_retries=0, timeout=timeout)
        output = temp_client.run_command('echo ok', stop_on_errors=False, read_timeout=timeout)
        unreachable = []
        for item in output:
            if item.exception:
                unreachable.append(item.host)
                continue
            try:
                lines = list(item.stdout or [])
            except Timeout:
                unreachable.append(item.host)
                continue
            if 'ok' not in [line.strip() for line in lines]:
                unreachable.append(item.host)
        return unreachable


    def prune_unreachable_hosts(self, output):
        """
        Drop hosts that raised ConnectionError/Timeout and also fail a fresh
        connectivity check, so later commands do not block on them.
        """
        initial_unreachable_len = len(self.unreachable_hosts)
        failed_hosts = [item.host for item in output if item.exception and isinstance(item.exception, (ConnectionError, Timeout))]
        unreachable = self.check_connectivity(failed_hosts)
        for host in unreachable:
            self.log.warning(f"Host {host} is unreachable, pruning from reachable hosts list.")
            self.unreachable_hosts.append(host)
            self.reachable_hosts.remove(host)
        if len(self.unreachable_hosts) > initial_unreachable_len:
            self.client = self._new_client(self.reachable_hosts)


    def inform_unreachability(self, cmd_output):
        for host in self.unreachable_hosts:
            cmd_output[host] = cmd_output.get(host, "") + "\nABORT: Host Unreachable Error"


    def _process_output(self, output, cmd=None):
        """
        Collect stdout/stderr of every host into a dictionary and, when
        stop_on_errors is off, prune hosts that went away.
        """
        cmd_output = {}
        for item in output:
            if self.verbose:
                print('#----------------------------------------------------------#')
                print(f'Host == {item.host} ==')
                print('#----------------------------------------------------------#')
            cmd_out_str = ''
            try:
                for line in item.stdout or []:
                    if self.verbose:
                        print(line)
                    cmd_out_str += line.replace('\t', '   ') + '\n'
                for line in item.stderr or []:
                    if self.verbose:
                        print(line)
                    cmd_out_str += line.replace('\t', '   ') + '\n'
            except Timeout as e:
                if not self.stop_on_errors:
                    self._handle_timeout_exception(output, e)
                else:
                    raise
            if item.exception:
                exc_str = str(item.exception) if str(item.exception) else repr(item.exception)
                exc_str = exc_str.replace('\t', '   ')
                if isinstance(item.exception, Timeout):
                    exc_str += "\nABORT: Timeout Error in Host: " + item.host
                self.log.error(f'{item.host}: {exc_str}')
                cmd_out_str += exc_str + '\n'
            cmd_output[item.host] = cmd_out_str

        if not self.stop_on_errors:
            self.prune_unreachable_hosts(output)
            self.inform_unreachability(cmd_output)

        return cmd_output


    def _handle_timeout_exception(self, output, e):
        """
        Timeout is raised once for the whole operation, so mark every host
        that has no exception yet.
        """
        if output is not None and isinstance(e, Timeout):
            for item in output:
                if item.exception is None:
                    item.exception = e


    def exec(self, cmd, timeout=None, env=None ):
        """
        Run a shell program on all hosts, optionally exporting env first.
        Returns a dictionary of host as key and command output as values
        """
        cmd = build_env_prefix(env) + cmd
        self.log.debug(f'ssh {self.user}@{",".join(self.reachable_hosts)}: {cmd}')
        if timeout is None:
            output = self.client.run_command(cmd, stop_on_errors=self.stop_on_errors )
        else:
            output = self.client.run_command(cmd, read_timeout=timeout, stop_on_errors=self.stop_on_errors )
        return self._process_output(output, cmd=cmd)


    def destroy_clients(self ):
        self.log.debug('Destroying current ssh connections')
        del self.client
