from .base import SubcommandPlugin
from sparkctl.lib import config_lib
from sparkctl.lib.model_catalog import CATALOG, format_model_listing, get_model_by_number
from sparkctl.lib.switch_lib import switch_model


class SwitchPlugin(SubcommandPlugin):
    def get_name(self):
        return "switch"

    def get_order(self):
        return 30

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("switch", help="Switch the served model and restart the cluster")
        parser.add_argument("model", nargs="?", help=f"Catalog number of the model (1-{len(CATALOG)})")
        parser.add_argument("-l", "--list", action="store_true", help="List available models and exit")
        parser.add_argument(
            "-s", "--skip-restart", action="store_true", help="Only update config.local.env, do not restart"
        )
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Switch Commands:
  sparkctl switch --list                               Show the model catalog
  sparkctl switch 3                                    Switch to model 3 and restart the cluster
  sparkctl switch 3 --skip-restart                     Only rewrite the model block of config.local.env
  sparkctl switch                                      Pick a model interactively"""

    def _prompt_for_model(self, current_model):
        print(format_model_listing(current_model))
        choice = input(f"Select model [1-{len(CATALOG)}] or 'q' to quit: ").strip()
        if choice.lower() in ("q", "quit", ""):
            return None
        return choice

    def run(self, args):
        config_dir = args.config_dir or config_lib.default_config_dir()
        current_model = config_lib.get_current_model(config_dir)
        if args.list:
            print(format_model_listing(current_model))
            return

        choice = args.model
        if choice is None:
            choice = self._prompt_for_model(current_model)
            if choice is None:
                print("Cancelled.")
                return
        profile = get_model_by_number(choice)
        switch_model(config_dir, profile, skip_restart=args.skip_restart)
