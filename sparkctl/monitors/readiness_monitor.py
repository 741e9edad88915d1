import argparse

from sparkctl.monitors.base import MonitorPlugin
from sparkctl.lib import config_lib
from sparkctl.lib.cluster_lib import check_readiness_verdict
from sparkctl.lib.local_shell_lib import LocalShell
from sparkctl.lib.readiness_lib import CleanExitPolicy, Verdict, build_head_poller, readiness_budget
from sparkctl.lib.utils_lib import print_msg


class ReadinessMonitor(MonitorPlugin):
    """Wait on an already launched cluster without touching its containers."""

    def get_name(self):
        return "readiness"

    def get_description(self):
        return "Poll the head container and /health of a running cluster until it is ready"

    def get_parser(self):
        parser = argparse.ArgumentParser(description="Wait for the SGLang API of a launched cluster")
        parser.add_argument("--config-dir", help="Directory holding config.env / config.local.env")
        parser.add_argument("--timeout", type=int, help="Seconds to wait (default 600 multi-node, 300 single node)")
        parser.add_argument("--nodes", type=int, help="Node count used for the default timeout (default NUM_NODES)")
        parser.add_argument(
            "--clean-exit-policy",
            choices=[policy.value for policy in CleanExitPolicy],
            default=CleanExitPolicy.SOFT.value,
        )
        return parser

    def monitor(self, args, hdl=None, sleep=None):
        settings = config_lib.load_settings(args.config_dir)
        num_nodes = args.nodes or settings.num_nodes
        budget = readiness_budget(num_nodes, args.timeout)
        hdl = hdl or LocalShell()
        kwargs = {"sleep": sleep} if sleep else {}

        print_msg(f"Waiting for {settings.head_container_name} to be ready (up to {budget}s)")
        poller = build_head_poller(
            settings, num_nodes, hdl, budget=budget, clean_exit_policy=CleanExitPolicy(args.clean_exit_policy), **kwargs
        )
        state = poller.run()
        check_readiness_verdict(state, settings.head_container_name)
        return 0 if state.verdict == Verdict.READY else 1
