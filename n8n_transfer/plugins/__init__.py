"""Plugin system for extensible workflow transfers."""

from n8n_transfer.plugins.base import (
    BasePlugin,
    DeduplicatorPlugin,
    PluginDescriptor,
    PluginKind,
    ReporterPlugin,
    ValidationResult,
    ValidatorPlugin,
)
from n8n_transfer.plugins.loaders import DiscoveryResult, PluginLoader, load_plugins
from n8n_transfer.plugins.registry import PluginRegistry, get_registry, reset_registry

__all__ = [
    "BasePlugin",
    "DeduplicatorPlugin",
    "PluginDescriptor",
    "PluginKind",
    "ReporterPlugin",
    "ValidationResult",
    "ValidatorPlugin",
    "DiscoveryResult",
    "PluginLoader",
    "load_plugins",
    "PluginRegistry",
    "get_registry",
    "reset_registry",
]
