import os
import pkgutil
import importlib
from abc import ABC, abstractmethod


class MonitorPlugin(ABC):
    """Base class for all monitor plugins"""

    @abstractmethod
    def get_name(self):
        """Return the name of this monitor"""
        pass

    @abstractmethod
    def get_description(self):
        """Return a description of this monitor"""
        pass

    @abstractmethod
    def get_parser(self):
        """Return an argparse parser for this monitor's arguments"""
        pass

    @abstractmethod
    def monitor(self, args):
        """Run the check. Returns the process exit code (0 on success)."""
        pass


def discover_monitors():
    """
    Import every module in sparkctl/monitors/ and instantiate the concrete
    MonitorPlugin classes found there.
    Returns a dict mapping monitor names to plugin instances.
    """
    monitors = {}
    monitors_dir = os.path.dirname(__file__)

    for module_info in pkgutil.iter_modules([monitors_dir]):
        if module_info.ispkg:
            continue
        try:
            module = importlib.import_module(f"sparkctl.monitors.{module_info.name}")
        except ImportError as e:
            print(f"Warning: Failed to load monitor {module_info.name}: {e}")
            continue
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (
                isinstance(attr, type)
                and issubclass(attr, MonitorPlugin)
                and attr is not MonitorPlugin
                and not getattr(attr, "__abstractmethods__", None)
            ):
                plugin_instance = attr()
                monitors[plugin_instance.get_name()] = plugin_instance

    return monitors

