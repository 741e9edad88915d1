import argparse

from sparkctl.monitors.base import MonitorPlugin
from sparkctl.lib import config_lib
from sparkctl.lib import verify_lib
from sparkctl.lib.cluster_lib import worker_hosts
from sparkctl.lib.launcher_lib import default_remote_factory
from sparkctl.lib.local_shell_lib import LocalShell
from sparkctl.lib.utils_lib import print_banner


def run_preflight_checks( settings, local_hdl, remote_factory, head_only=False ):
    results = [
        verify_lib.verify_docker_installed(local_hdl),
        verify_lib.verify_docker_running(local_hdl),
        verify_lib.verify_nvidia_smi(local_hdl),
        verify_lib.verify_infiniband(local_hdl),
    ]
    if not head_only:
        results.extend(verify_lib.verify_worker_ssh(remote_factory, worker_hosts(settings), settings.worker_user))
    results.append(verify_lib.verify_hf_cache(settings.hf_cache))
    return results


class PreflightMonitor(MonitorPlugin):
    """Host checks before `sparkctl launch`."""

    def get_name(self):
        return "preflight"

    def get_description(self):
        return "Check docker, nvidia-smi, InfiniBand, worker SSH and the HF cache before a launch"

    def get_parser(self):
        parser = argparse.ArgumentParser(description="Preflight checks for a DGX Spark SGLang cluster")
        parser.add_argument("--config-dir", help="Directory holding config.env / config.local.env")
        parser.add_argument("--head-only", action="store_true", help="Skip the worker SSH checks")
        return parser

    def monitor(self, args, local_hdl=None, remote_factory=None):
        settings = config_lib.load_settings(args.config_dir)
        local_hdl = local_hdl or LocalShell()
        remote_factory = remote_factory or default_remote_factory(settings)

        print_banner("Preflight Checks")
        results = run_preflight_checks(settings, local_hdl, remote_factory, head_only=args.head_only)
        for result in results:
            line = f"  [{result.status}] {result.name}"
            if result.detail:
                line += f": {result.detail}"
            print(line)

        counts = verify_lib.summarize(results)
        print("")
        print(f"  {counts[verify_lib.PASS]} passed, {counts[verify_lib.WARN]} warnings, {counts[verify_lib.FAIL]} failed")
        return 1 if counts[verify_lib.FAIL] else 0
