from .base import SubcommandPlugin
from sparkctl.lib.cluster_lib import stop_cluster


class StopPlugin(SubcommandPlugin):
    def get_name(self):
        return "stop"

    def get_order(self):
        return 20

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("stop", help="Remove the head and worker containers")
        parser.add_argument("--head-only", action="store_true", help="Only stop the local head container")
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Stop Commands:
  sparkctl stop                                        Stop head and all workers
  sparkctl stop --head-only                            Stop the local head container only"""

    def run(self, args):
        stop_cluster(self.load_settings(args), head_only=args.head_only)
