from .base import SubcommandPlugin
from sparkctl.lib.cluster_lib import start_cluster
from sparkctl.lib.readiness_lib import CleanExitPolicy


class LaunchPlugin(SubcommandPlugin):
    def get_name(self):
        return "launch"

    def get_order(self):
        return 10

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("launch", help="Start the SGLang head and worker containers and wait for the API")
        parser.add_argument("--head-only", action="store_true", help="Start only the head node (single node serving)")
        parser.add_argument("--skip-pull", action="store_true", help="Do not pull the container image")
        parser.add_argument("--worker-host", help="Worker management addresses for SSH (space separated)")
        parser.add_argument(
            "--worker-ib-ip",
            "--worker-ip",
            dest="worker_ib_ip",
            help="Worker fabric (InfiniBand) addresses for NCCL (space separated)",
        )
        parser.add_argument(
            "--ready-timeout", type=int, help="Seconds to wait for the API (default 600 multi-node, 300 single node)"
        )
        parser.add_argument(
            "--clean-exit-policy",
            choices=[policy.value for policy in CleanExitPolicy],
            default=CleanExitPolicy.SOFT.value,
            help="How a head container that exits with code 0 is treated while waiting (default: soft)",
        )
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Launch Commands:
  sparkctl launch                                      Start the cluster using config.local.env
  sparkctl launch --head-only                          Single node serving on this machine
  sparkctl launch --worker-host 192.168.1.101 --worker-ib-ip 169.254.0.2
  sparkctl launch --skip-pull --ready-timeout 900"""

    def run(self, args):
        settings = self.load_settings(args)
        start_cluster(
            settings,
            head_only=args.head_only,
            skip_pull=args.skip_pull,
            worker_host=args.worker_host,
            worker_ib_ip=args.worker_ib_ip,
            ready_timeout=args.ready_timeout,
            clean_exit_policy=CleanExitPolicy(args.clean_exit_policy),
        )
