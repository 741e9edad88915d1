import argparse
import unittest
from unittest.mock import patch

from sparkctl.cli_plugins.switch_plugin import SwitchPlugin
from sparkctl.lib.model_catalog import CATALOG
from sparkctl.lib.utils_lib import ConfigurationError


def make_args(**kwargs):
    values = dict(model=None, list=False, skip_restart=False, config_dir="/etc/spark")
    values.update(kwargs)
    return argparse.Namespace(**values)


@patch("sparkctl.cli_plugins.switch_plugin.config_lib.get_current_model", return_value="openai/gpt-oss-120b")
@patch("sparkctl.cli_plugins.switch_plugin.switch_model")
class TestSwitchPlugin(unittest.TestCase):
    def setUp(self):
        self.plugin = SwitchPlugin()

    @patch("builtins.print")
    def test_list(self, mock_print, mock_switch, mock_current):
        self.plugin.run(make_args(list=True))
        mock_switch.assert_not_called()
        self.assertIn(" * 1. ", mock_print.call_args[0][0])

    def test_switch_by_number(self, mock_switch, mock_current):
        self.plugin.run(make_args(model="3", skip_restart=True))
        mock_switch.assert_called_once_with("/etc/spark", CATALOG[2], skip_restart=True)

    def test_invalid_number(self, mock_switch, mock_current):
        with self.assertRaises(ConfigurationError):
            self.plugin.run(make_args(model="15"))
        mock_switch.assert_not_called()

    @patch("builtins.print")
    @patch("builtins.input", return_value="2")
    def test_interactive_choice(self, mock_input, mock_print, mock_switch, mock_current):
        self.plugin.run(make_args())
        mock_switch.assert_called_once_with("/etc/spark", CATALOG[1], skip_restart=False)

    @patch("builtins.print")
    @patch("builtins.input", return_value="q")
    def test_interactive_quit(self, mock_input, mock_print, mock_switch, mock_current):
        self.plugin.run(make_args())
        mock_switch.assert_not_called()
        mock_print.assert_called_with("Cancelled.")


if __name__ == "__main__":
    unittest.main()
