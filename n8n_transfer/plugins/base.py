"""Plugin system base classes and interfaces.

This module defines the plugin contract shared by every extension point:
a ``PluginDescriptor`` holding identity, enabled flag and options, composed
into ``BasePlugin``, plus one abstract capability class per plugin kind
(``DeduplicatorPlugin``, ``ValidatorPlugin``, ``ReporterPlugin``).
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

if TYPE_CHECKING:
    from n8n_transfer.core.models import TransferSummary


SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


class PluginKind(str, Enum):
    """Kind of plugin."""
    DEDUPLICATOR = "deduplicator"
    VALIDATOR = "validator"
    REPORTER = "reporter"


# Capability method each kind must expose
REQUIRED_METHODS: Dict[PluginKind, str] = {
    PluginKind.DEDUPLICATOR: "is_duplicate",
    PluginKind.VALIDATOR: "validate",
    PluginKind.REPORTER: "generate",
}


@dataclass
class PluginDescriptor:
    """Identity and runtime state of a plugin.

    Attributes:
        name: Unique plugin name (compared case-insensitively)
        version: Plugin version in semver format
        kind: Plugin kind (deduplicator, validator, reporter)
        enabled: Whether the plugin takes part in transfers
        options: Plugin-specific options
        description: Brief description of the plugin
    """
    name: str
    version: str
    kind: PluginKind
    enabled: bool = True
    options: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Plugin name is required and must be a non-empty string")
        if not isinstance(self.version, str) or not SEMVER_PATTERN.match(self.version):
            raise ValueError(f"Plugin version must be a semver string, got {self.version!r}")
        try:
            self.kind = PluginKind(self.kind)
        except ValueError:
            valid = ", ".join(k.value for k in PluginKind)
            raise ValueError(f"Plugin kind must be one of: {valid}") from None


@dataclass
class ValidationResult:
    """Result of validating a workflow.

    Attributes:
        valid: Whether the workflow passed (no blocking errors)
        errors: Blocking validation error messages
        warnings: Advisory messages, never affect ``valid``
        metadata: Validator-specific details
    """
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def merge(cls, results: List["ValidationResult"]) -> "ValidationResult":
        """Combine several results into one.

        The merged result is valid only if every input is valid. Metadata
        is keyed by the ``validator`` entry of each result when present.
        """
        merged = cls(valid=True)
        for index, result in enumerate(results):
            merged.errors.extend(result.errors)
            merged.warnings.extend(result.warnings)
            key = result.metadata.get("validator", f"validator_{index}")
            merged.metadata[key] = result.metadata
        merged.valid = not merged.errors
        return merged

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": dict(self.metadata),
        }


# ============================================================================
# Abstract Base Classes
# ============================================================================

class BasePlugin(ABC):
    """Base class for all plugins.

    Identity and options live in a ``PluginDescriptor``; the plugin only
    exposes accessors over it. Concrete plugins inherit from one of the
    kind-specific subclasses below.
    """

    def __init__(
        self,
        name: str,
        version: str,
        kind: PluginKind,
        options: Optional[Mapping[str, Any]] = None,
        description: str = "",
    ) -> None:
        self._descriptor = PluginDescriptor(
            name=name,
            version=version,
            kind=kind,
            options=dict(options or {}),
            description=description,
        )

    @property
    def descriptor(self) -> PluginDescriptor:
        return self._descriptor

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def version(self) -> str:
        return self._descriptor.version

    @property
    def kind(self) -> PluginKind:
        return self._descriptor.kind

    @property
    def description(self) -> str:
        return self._descriptor.description

    @property
    def enabled(self) -> bool:
        return self._descriptor.enabled

    def enable(self) -> "BasePlugin":
        self._descriptor.enabled = True
        return self

    def disable(self) -> "BasePlugin":
        self._descriptor.enabled = False
        return self

    def set_options(self, options: Mapping[str, Any]) -> "BasePlugin":
        """Merge options into the current option set.

        Args:
            options: Options to merge; existing keys are overwritten

        Returns:
            The plugin itself, for chaining
        """
        self._descriptor.options.update(options)
        return self

    def get_option(self, key: str, default: Any = None) -> Any:
        """Get an option value.

        Args:
            key: Option name
            default: Value returned when the option is not set (or is None)

        Returns:
            Option value or default
        """
        value = self._descriptor.options.get(key)
        return default if value is None else value

    def get_info(self) -> Dict[str, Any]:
        """Return a serializable description of the plugin."""
        return {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "description": self.description,
            "options": dict(self._descriptor.options),
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} v{self.version} ({self.kind.value})>"


class DeduplicatorPlugin(BasePlugin, ABC):
    """Abstract base class for deduplicator plugins.

    Deduplicators decide whether an incoming workflow already exists
    at the target instance.
    """

    def __init__(self, name: str, version: str, **kwargs: Any) -> None:
        super().__init__(name, version, PluginKind.DEDUPLICATOR, **kwargs)
        self._last_reason: Optional[str] = None

    @abstractmethod
    def is_duplicate(self, workflow: Any, existing_workflows: Any) -> bool:
        """Check whether a workflow duplicates one of the existing workflows.

        Args:
            workflow: Candidate workflow (mapping)
            existing_workflows: Workflows already present at the target

        Returns:
            True if a duplicate was found. Malformed input returns False.
        """
        ...

    def get_reason(self) -> str:
        """Explain the last ``is_duplicate`` decision."""
        return self._last_reason or "No duplicate check performed"


class ValidatorPlugin(BasePlugin, ABC):
    """Abstract base class for validator plugins."""

    def __init__(self, name: str, version: str, **kwargs: Any) -> None:
        super().__init__(name, version, PluginKind.VALIDATOR, **kwargs)

    @abstractmethod
    def validate(self, workflow: Any) -> ValidationResult:
        """Validate a workflow.

        Args:
            workflow: Workflow to validate (mapping)

        Returns:
            ValidationResult with errors, warnings and metadata
        """
        ...


class ReporterPlugin(BasePlugin, ABC):
    """Abstract base class for reporter plugins.

    Reporters are pure formatters: they never mutate the summary and
    never persist their output.
    """

    #: File extension used when the output is persisted by a sink
    extension: str = "txt"

    def __init__(self, name: str, version: str, **kwargs: Any) -> None:
        super().__init__(name, version, PluginKind.REPORTER, **kwargs)

    @abstractmethod
    def generate(self, summary: "TransferSummary") -> str:
        """Format a transfer summary.

        Args:
            summary: Read-only transfer summary

        Returns:
            Formatted report
        """
        ...
