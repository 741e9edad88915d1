from .base import SubcommandPlugin
from sparkctl.lib import config_lib
from sparkctl.lib.utils_lib import ConfigurationError
import os
import shutil


class CopyConfigPlugin(SubcommandPlugin):
    def get_name(self):
        return "copy-config"

    def get_order(self):
        return 90

    def get_parser(self, subparsers):
        parser = subparsers.add_parser(
            "copy-config", help="List or copy the config templates shipped with sparkctl into the config directory"
        )
        parser.add_argument("path", nargs="?", default=config_lib.CONFIG_FILE, help="Template to copy (default config.env)")
        parser.add_argument("--output", help="Destination file or directory (default: the config directory)")
        parser.add_argument("--list", action="store_true", help="List available templates")
        parser.add_argument("--force", action="store_true", help="Force overwrite of existing files")
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Copy-Config Commands:
  sparkctl copy-config --list                          List packaged config templates
  sparkctl copy-config                                 Copy config.env into the config directory
  sparkctl copy-config config.local.env.example --output ~/spark/config.local.env
  sparkctl copy-config --force                         Overwrite an existing config.env"""

    def _config_root(self):
        sparkctl_dir = os.path.dirname(os.path.dirname(__file__))
        return os.path.join(sparkctl_dir, "input", "config_file")

    def _list_configs(self, root):
        if not os.path.isdir(root):
            return []
        return sorted(f for f in os.listdir(root) if f.startswith("config"))

    def run(self, args):
        root = self._config_root()
        if args.list:
            print(f"Configs under {root}:")
            for name in self._list_configs(root):
                print(f"  {name}")
            return

        src = os.path.join(root, args.path)
        if not os.path.isfile(src):
            raise ConfigurationError(
                f"Config template not found: {args.path}", remediation="List templates with: sparkctl copy-config --list"
            )
        output = args.output or getattr(args, "config_dir", None) or config_lib.default_config_dir()
        if os.path.isdir(output) or not args.output:
            dest = os.path.join(output, os.path.basename(src))
        else:
            dest = output
        if os.path.dirname(dest):
            os.makedirs(os.path.dirname(dest), exist_ok=True)
        if os.path.exists(dest) and not args.force:
            raise ConfigurationError(f"File {dest} already exists", remediation="Use --force to overwrite")
        shutil.copyfile(src, dest)
        print(f"Copied {src} to {dest}")
