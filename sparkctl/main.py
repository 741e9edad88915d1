#!/usr/bin/env python3
import argparse
import sys
import os
import importlib
import pkgutil
import importlib.metadata as metadata
from sparkctl.cli_plugins.base import SubcommandPlugin
from sparkctl.lib import globals
from sparkctl.lib.utils_lib import SparkctlError, print_error

PLUGIN_DIR = os.path.join(os.path.dirname(__file__), "cli_plugins")
DEFAULT_LOG_FILE = "/tmp/sparkctl/sparkctl.log"


def get_version():
    """Get the version from importlib.metadata or fallback to version.txt file."""
    try:
        return metadata.version("sparkctl")
    except metadata.PackageNotFoundError:
        # Fallback for development
        version_file = os.path.join(os.path.dirname(__file__), "..", "version.txt")
        if os.path.exists(version_file):
            with open(version_file) as f:
                return f.read().strip()
    return "unknown"


def discover_plugins():
    """Discover and instantiate all CLI subcommand plugin classes from the cli_plugins directory.

    Only classes defined directly in a module (not imported into it) are
    instantiated, so the base class and shared helpers are never registered
    twice.

    Returns:
        list: Plugin instances, sorted by order then alphabetically by name.
    """
    plugins = []
    for _, name, ispkg in pkgutil.iter_modules([PLUGIN_DIR]):
        if ispkg:
            continue
        try:
            mod = importlib.import_module(f"sparkctl.cli_plugins.{name}")
        except ImportError as e:
            print(f"Warning: Failed to load plugin {name}: {e}")
            continue
        for attr in dir(mod):
            obj = getattr(mod, attr)
            if (
                isinstance(obj, type)
                and issubclass(obj, SubcommandPlugin)
                and obj is not SubcommandPlugin
                and obj.__module__ == mod.__name__
            ):
                plugins.append(obj())

    return sorted(plugins, key=lambda p: (p.get_order(), p.get_name()))


def build_arg_parser(plugins):
    """Build the sparkctl argument parser, one subparser per plugin.

    Epilogs (examples) of all plugins are concatenated into the top level
    help.
    """
    epilogs = [plugin.get_epilog() for plugin in plugins if plugin.get_epilog().strip()]
    epilog = "\n".join(epilogs) if epilogs else ""

    parser = argparse.ArgumentParser(
        prog="sparkctl",
        description="SGLang cluster launcher and benchmark runner for DGX Spark",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog,
    )
    parser.add_argument("--version", action="version", version=get_version())
    parser.add_argument(
        "--config-dir", help="Directory holding config.env / config.local.env (default: $SPARKCTL_CONFIG_DIR or cwd)"
    )
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help=f"Log file (default: {DEFAULT_LOG_FILE})")
    parser.add_argument(
        "--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log file level"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    for plugin in plugins:
        plugin.get_parser(subparsers)
    return parser


def main(plugins=None, argv=None):
    if plugins is None:
        plugins = discover_plugins()
    parser = build_arg_parser(plugins)
    args = parser.parse_args(argv)

    if not hasattr(args, "_plugin"):
        parser.print_help()
        sys.exit(1)

    globals.setup_logging(args.log_file, args.log_level)
    globals.log.info(f"sparkctl {get_version()} command: {args.command}")
    try:
        args._plugin.run(args)
    except SparkctlError as e:
        print_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(130)


if __name__ == "__main__":
    main()
