from .base import SubcommandPlugin
from sparkctl.lib.utils_lib import ConfigurationError
from sparkctl.monitors.base import discover_monitors
import argparse
import sys

# Top-level options a monitor falls back to when it was not given its own
INHERITED_OPTIONS = ("config_dir",)


class MonitorPlugin(SubcommandPlugin):
    def get_name(self):
        return "monitor"

    def get_order(self):
        return 100

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("monitor", help="Run a preflight or readiness check")
        parser.add_argument("monitor", nargs="?", help="Check to run; omit to list them")
        parser.add_argument("monitor_args", nargs=argparse.REMAINDER, help="Options passed to the check")
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Monitor Commands:
  sparkctl monitor                                     List all available monitors
  sparkctl monitor preflight                           Check docker, GPUs, InfiniBand and worker SSH
  sparkctl monitor readiness --timeout 120             Wait for an already launched cluster"""

    def list_monitors(self, monitors):
        if not monitors:
            print("No monitors installed.")
            return
        width = max(len(name) for name in monitors)
        print("Available monitors:")
        for name, plugin in sorted(monitors.items()):
            print(f"  {name:<{width}}  {plugin.get_description()}")
        print("Run 'sparkctl monitor <name> --help' for its options.")

    def run_monitor(self, plugin, argv, context):
        """Parse argv with the monitor's parser, fill inherited options from context, return its exit code."""
        parser = plugin.get_parser()
        parser.prog = f"sparkctl monitor {plugin.get_name()}"
        monitor_args = parser.parse_args(argv)
        for option in INHERITED_OPTIONS:
            if getattr(monitor_args, option, None) is None:
                setattr(monitor_args, option, getattr(context, option, None))
        return plugin.monitor(monitor_args)

    def run(self, args):
        monitors = discover_monitors()
        if args.monitor is None:
            self.list_monitors(monitors)
            return
        if args.monitor not in monitors:
            raise ConfigurationError(f"Unknown monitor '{args.monitor}'",
                remediation=f"Available monitors: {', '.join(sorted(monitors))}")
        rc = self.run_monitor(monitors[args.monitor], args.monitor_args, args)
        if rc:
            sys.exit(rc)
