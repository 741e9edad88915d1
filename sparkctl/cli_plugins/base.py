from sparkctl.lib import config_lib


class SubcommandPlugin:
    """Base class for sparkctl subcommand plugins."""

    def get_name(self):
        raise NotImplementedError

    def get_parser(self, subparsers):
        """Register subcommand with argparse subparsers."""
        raise NotImplementedError

    def get_epilog(self):
        """Examples shown in the top level --help. Default is empty."""
        return ""

    def get_order(self):
        """Display order; lower numbers appear first."""
        return 0

    def load_settings(self, args, overrides=None):
        """ClusterSettings for the config dir selected by the global --config-dir option."""
        return config_lib.load_settings(getattr(args, "config_dir", None), overrides=overrides)

    def run(self, args):
        """Run the subcommand logic."""
        raise NotImplementedError
