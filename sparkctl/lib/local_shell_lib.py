'''
Command channel to the head node itself.

LocalShell has the same exec() contract as parallel_ssh_lib.Pssh so the
library functions can be pointed at the local node or at a worker without
caring which one it is.
'''

import subprocess

from sparkctl.lib import globals
from sparkctl.lib.parallel_ssh_lib import build_env_prefix

log = globals.log

LOCAL_HOST = 'localhost'


class LocalShell():

    def __init__(self, log=log, verbose=False, shell='/bin/bash'):
        self.log = log
        self.verbose = verbose
        self.shell = shell
        self.host_list = [LOCAL_HOST]


    def exec(self, cmd, timeout=None, env=None):
        """
        Run a shell program locally.
        Returns a dictionary {'localhost': combined stdout and stderr}.
        A command that exceeds the timeout gets an ABORT line appended to
        whatever output it produced, mirroring the ssh channel.
        """
        cmd = build_env_prefix(env) + cmd
        self.log.debug(f'local: {cmd}')
        try:
            proc = subprocess.run(cmd, shell=True, executable=self.shell, capture_output=True,
                text=True, timeout=timeout)
            out = (proc.stdout or '') + (proc.stderr or '')
        except subprocess.TimeoutExpired as e:
            out = e.stdout or ''
            if isinstance(out, bytes):
                out = out.decode('utf-8', errors='replace')
            out += f'\nABORT: Timeout Error in Host: {LOCAL_HOST}'
            self.log.error(f'local command timed out after {timeout}s: {cmd}')
        if self.verbose:
            print(out)
        return {LOCAL_HOST: out}


    def check_connectivity(self, hosts=None, timeout=None):
        return []
