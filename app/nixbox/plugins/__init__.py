"""Built-in plugins and profile wrapper generation."""

from nixbox.plugins.manager import PluginConfig, PluginManager, builtin_plugins

__all__ = ["PluginConfig", "PluginManager", "builtin_plugins"]
