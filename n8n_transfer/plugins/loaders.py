"""Plugin discovery and loading mechanisms.

This module provides mechanisms for discovering and loading plugins from
plugin directories, Python modules and package entry points.
"""

import importlib
import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from n8n_transfer.plugins.base import (
    BasePlugin,
    DeduplicatorPlugin,
    ReporterPlugin,
    ValidatorPlugin,
)
from n8n_transfer.plugins.registry import PluginRegistry, get_registry

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "n8n_transfer.plugins"

_KIND_BASES = (DeduplicatorPlugin, ValidatorPlugin, ReporterPlugin)


@dataclass
class DiscoveryResult:
    """Outcome of a discovery pass over a directory.

    Attributes:
        total: Number of candidate module files
        loaded: Number of plugins registered
        failed: Number of files that failed to yield a plugin
        plugins: Names of registered plugins
        errors: One ``{"file": ..., "message": ...}`` entry per failure
    """
    total: int = 0
    loaded: int = 0
    failed: int = 0
    plugins: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


def builtin_plugins() -> List[BasePlugin]:
    """Fresh instances of the built-in plugins."""
    from n8n_transfer.plugins.deduplicators import FuzzyDeduplicator, StandardDeduplicator
    from n8n_transfer.plugins.reporters import CSVReporter, JSONReporter, MarkdownReporter
    from n8n_transfer.plugins.validators import IntegrityValidator, SchemaValidator

    return [
        StandardDeduplicator(),
        FuzzyDeduplicator(),
        SchemaValidator(),
        IntegrityValidator(),
        JSONReporter(),
        MarkdownReporter(),
        CSVReporter(),
    ]


class PluginLoader:
    """Loader for discovering and loading plugins.

    Example:
        >>> loader = PluginLoader()
        >>> result = loader.discover("./plugins")
        >>> loader.load_from_module("my_package.plugins")
    """

    def __init__(self, registry: Optional[PluginRegistry] = None) -> None:
        """Initialize the plugin loader.

        Args:
            registry: Plugin registry to load plugins into.
                     If None, uses the global registry.
        """
        self.registry = registry if registry is not None else get_registry()
        self._loaded_modules: set[str] = set()

    def discover(self, directory: Union[str, Path]) -> DiscoveryResult:
        """Load plugins from every ``*.py`` module of a directory.

        Files starting with ``_`` are ignored. A file that cannot be
        imported, defines no concrete plugin class, or whose plugin fails
        to register counts as one failure.

        Raises:
            FileNotFoundError: If the directory does not exist
            NotADirectoryError: If the path is not a directory
        """
        path = Path(directory)
        if not path.exists():
            raise FileNotFoundError(f"Plugin directory not found: {directory}")
        if not path.is_dir():
            raise NotADirectoryError(f"Plugin path is not a directory: {directory}")

        result = DiscoveryResult()
        files = sorted(p for p in path.glob("*.py") if not p.name.startswith("_"))
        result.total = len(files)

        for file_path in files:
            try:
                module = self._load_module_from_file(file_path)
                plugins = self._register_plugins_from_module(module)
            except Exception as e:
                logger.error(f"Failed to load plugin from {file_path}: {e}")
                result.failed += 1
                result.errors.append({"file": file_path.name, "message": str(e)})
                continue

            if not plugins:
                result.failed += 1
                result.errors.append({"file": file_path.name, "message": "Module does not define a valid plugin"})
                continue

            result.loaded += len(plugins)
            result.plugins.extend(p.name for p in plugins)

        logger.info(
            f"Discovered {result.loaded} plugins in {directory} "
            f"({result.failed} of {result.total} files failed)"
        )
        return result

    def load_from_module(self, module_name: str) -> int:
        """Load plugins from a Python module.

        Args:
            module_name: Fully qualified module name (e.g., "my_package.plugins")

        Returns:
            Number of plugins loaded
        """
        if module_name in self._loaded_modules:
            logger.debug(f"Module {module_name} already loaded")
            return 0

        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            logger.error(f"Failed to import module {module_name}: {e}")
            return 0

        self._loaded_modules.add(module_name)
        count = len(self._register_plugins_from_module(module))
        logger.info(f"Loaded {count} plugins from module {module_name}")
        return count

    def load_from_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Load plugins from package entry points.

        This allows pip-installed packages to register plugins. An entry
        point may reference a plugin class or a plugin instance.

        Args:
            group: Entry point group name

        Returns:
            Number of plugins loaded
        """
        count = 0
        for ep in entry_points(group=group):
            try:
                target = ep.load()
                if inspect.isclass(target):
                    if not self._is_valid_plugin_class(target):
                        logger.warning(f"Entry point {ep.name} is not a plugin class")
                        continue
                    target = target()
                self.registry.register(target)
                count += 1
            except Exception as e:
                logger.error(f"Failed to load entry point plugin {ep.name}: {e}")

        logger.info(f"Loaded {count} plugins from entry points")
        return count

    def _load_module_from_file(self, file_path: Path) -> Any:
        """Load a Python module from a file path.

        Args:
            file_path: Path to the Python file

        Returns:
            Loaded module
        """
        module_name = f"_n8n_transfer_plugin_{file_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {file_path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module

    def _register_plugins_from_module(self, module: Any) -> List[BasePlugin]:
        """Find, instantiate and register the plugin classes a module defines.

        Classes imported into the module from elsewhere are ignored. A module
        registers all of its plugins or none of them.

        Raises:
            Exception: Instantiation or registration errors propagate
        """
        plugins = [
            obj()
            for obj in (getattr(module, name) for name in dir(module))
            if inspect.isclass(obj)
            and obj.__module__ == module.__name__
            and self._is_valid_plugin_class(obj)
        ]

        registered: List[BasePlugin] = []
        try:
            for plugin in plugins:
                registered.append(self.registry.register(plugin))
        except Exception:
            for plugin in registered:
                self.registry.unregister(plugin.name)
            raise

        return registered

    def _is_valid_plugin_class(self, cls: type) -> bool:
        """Check if a class is a concrete plugin class.

        Args:
            cls: Class to check

        Returns:
            True if the class is a concrete subclass of a plugin kind
        """
        if inspect.isabstract(cls):
            return False

        return issubclass(cls, _KIND_BASES) and cls not in _KIND_BASES


def load_plugins(
    registry: Optional[PluginRegistry] = None,
    plugin_dirs: Optional[List[Union[str, Path]]] = None,
    include_entry_points: bool = True,
) -> Dict[str, Any]:
    """Register built-ins, entry point plugins and directory plugins.

    Args:
        registry: Target registry (global registry when None)
        plugin_dirs: Directories passed to :meth:`PluginLoader.discover`
        include_entry_points: Whether to scan package entry points

    Returns:
        Dictionary with counts per source and discovery results per directory
    """
    loader = PluginLoader(registry)
    results: Dict[str, Any] = {
        "builtins": len(loader.registry.register_builtin_plugins()),
        "entry_points": loader.load_from_entry_points() if include_entry_points else 0,
        "directories": {},
    }
    for directory in plugin_dirs or []:
        results["directories"][str(directory)] = loader.discover(directory)
    return results
