"""Plugin registry for managing plugin lifecycle and discovery.

This module provides a centralized registry holding every plugin instance
for the process lifetime, indexed by name (case-insensitive) and by kind.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from n8n_transfer.core.errors import DuplicatePluginError, MissingMethodError
from n8n_transfer.plugins.base import REQUIRED_METHODS, BasePlugin, PluginKind

if TYPE_CHECKING:
    from n8n_transfer.plugins.loaders import DiscoveryResult

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Central registry for managing plugins.

    Example:
        >>> registry = PluginRegistry()
        >>> registry.register(IntegrityValidator())
        >>> plugin = registry.get("Integrity-Validator")
    """

    def __init__(self) -> None:
        self._plugins: Dict[str, BasePlugin] = {}
        self._by_kind: Dict[PluginKind, Dict[str, BasePlugin]] = {kind: {} for kind in PluginKind}

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._plugins

    def register(self, plugin: BasePlugin) -> BasePlugin:
        """Register a plugin with the registry.

        Args:
            plugin: Plugin instance to register

        Returns:
            The registered plugin

        Raises:
            TypeError: If the object is not a BasePlugin
            MissingMethodError: If the kind's capability method is missing
            DuplicatePluginError: If the name is already registered
        """
        if not isinstance(plugin, BasePlugin):
            raise TypeError(f"Plugin must be a BasePlugin instance, got {type(plugin).__name__}")

        method = REQUIRED_METHODS[plugin.kind]
        if not callable(getattr(plugin, method, None)):
            raise MissingMethodError(
                f"Plugin '{plugin.name}' of kind '{plugin.kind.value}' must implement {method}()"
            )

        key = self._key(plugin.name)
        if key in self._plugins:
            raise DuplicatePluginError(f"Plugin '{plugin.name}' is already registered")

        self._plugins[key] = plugin
        self._by_kind[plugin.kind][key] = plugin
        logger.info(f"Registered {plugin.kind.value} plugin: {plugin.name} v{plugin.version}")
        return plugin

    def unregister(self, name: str) -> bool:
        """Unregister a plugin.

        Args:
            name: Plugin name (case-insensitive)

        Returns:
            True if a plugin was removed
        """
        key = self._key(name)
        plugin = self._plugins.pop(key, None)
        if plugin is None:
            return False
        self._by_kind[plugin.kind].pop(key, None)
        logger.info(f"Unregistered {plugin.kind.value} plugin: {plugin.name}")
        return True

    def clear(self) -> None:
        """Remove every registered plugin."""
        self._plugins.clear()
        for plugins in self._by_kind.values():
            plugins.clear()
        logger.debug("Cleared plugin registry")

    def get(
        self,
        name: str,
        kind: Optional[Union[PluginKind, str]] = None,
    ) -> Optional[BasePlugin]:
        """Get a plugin by name.

        Args:
            name: Plugin name (case-insensitive)
            kind: If given, only return the plugin when it has this kind

        Returns:
            Plugin instance or None if not found
        """
        if not isinstance(name, str) or not name.strip():
            return None
        plugin = self._plugins.get(self._key(name))
        if plugin is None:
            return None
        if kind is not None and plugin.kind is not PluginKind(kind):
            return None
        return plugin

    def has(self, name: str) -> bool:
        return name in self

    def list_by_kind(self, kind: Union[PluginKind, str], enabled_only: bool = False) -> List[BasePlugin]:
        """List plugins of one kind in registration order.

        Raises:
            ValueError: If the kind is unknown
        """
        plugins = list(self._by_kind[PluginKind(kind)].values())
        if enabled_only:
            plugins = [p for p in plugins if p.enabled]
        return plugins

    def list_all(self) -> List[BasePlugin]:
        return list(self._plugins.values())

    def get_stats(self) -> Dict[str, Any]:
        """Registry statistics.

        Returns:
            Dictionary with total, enabled, disabled and per-kind counts
        """
        enabled = sum(1 for p in self._plugins.values() if p.enabled)
        return {
            "total": len(self._plugins),
            "enabled": enabled,
            "disabled": len(self._plugins) - enabled,
            "by_kind": {kind.value: len(plugins) for kind, plugins in self._by_kind.items()},
        }

    def discover(self, directory: Union[str, Path]) -> "DiscoveryResult":
        """Load and register plugins from every module in a directory.

        Per-file failures are recorded in the result, never raised.

        Args:
            directory: Directory containing plugin modules

        Returns:
            DiscoveryResult with counts, plugin names and errors

        Raises:
            FileNotFoundError: If the directory does not exist
            NotADirectoryError: If the path is not a directory
        """
        from n8n_transfer.plugins.loaders import PluginLoader

        return PluginLoader(self).discover(directory)

    def register_builtin_plugins(self) -> List[BasePlugin]:
        """Register the built-in plugins that are not registered yet.

        Returns:
            Newly registered plugins
        """
        from n8n_transfer.plugins.loaders import builtin_plugins

        registered = []
        for plugin in builtin_plugins():
            if plugin.name in self:
                continue
            registered.append(self.register(plugin))
        return registered


# Global registry instance
_global_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry instance.

    Returns:
        Global PluginRegistry instance
    """
    global _global_registry
    if _global_registry is None:
        _global_registry = PluginRegistry()
    return _global_registry


def reset_registry() -> None:
    """Reset the global registry (useful for testing)."""
    global _global_registry
    _global_registry = None
