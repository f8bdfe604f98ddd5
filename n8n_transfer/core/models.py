"""Domain models for workflow transfers.

Workflow shapes are described with pydantic models (used by the schema
validator); per-run transfer bookkeeping uses plain dataclasses owned by the
transfer manager.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from n8n_transfer.core.errors import ErrorCode, InvalidTransitionError
from n8n_transfer.plugins.base import ValidationResult


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Workflow shape
# ============================================================================

class TagSchema(BaseModel):
    """Workflow tag as returned by the n8n API."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: str = Field(min_length=1)


class NodeSchema(BaseModel):
    """A single node of a workflow graph."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    position: Tuple[float, float]
    parameters: Dict[str, Any]
    credentials: Optional[Dict[str, Any]] = None
    disabled: Optional[bool] = None


class WorkflowSchema(BaseModel):
    """Structural contract of a workflow definition."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: str = Field(min_length=1)
    nodes: List[NodeSchema] = Field(min_length=1)
    connections: Dict[str, Any]
    tags: Optional[List[Union[str, TagSchema]]] = None
    active: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None


def tag_names(tags: Any) -> List[str]:
    """Normalize a tag list to tag names.

    Tags may be plain strings or ``{"id": ..., "name": ...}`` mappings;
    anything else is ignored.
    """
    if not isinstance(tags, list):
        return []
    names: List[str] = []
    for tag in tags:
        if isinstance(tag, str):
            names.append(tag)
        elif isinstance(tag, Mapping) and isinstance(tag.get("name"), str):
            names.append(tag["name"])
    return names


def workflow_name(workflow: Any) -> str:
    if isinstance(workflow, Mapping) and isinstance(workflow.get("name"), str):
        return workflow["name"]
    return "Unnamed Workflow"


def has_credentials(workflow: Mapping[str, Any]) -> bool:
    """Whether any node of the workflow references credentials."""
    nodes = workflow.get("nodes")
    if not isinstance(nodes, list):
        return False
    return any(
        isinstance(node, Mapping) and isinstance(node.get("credentials"), Mapping)
        and len(node["credentials"]) > 0
        for node in nodes
    )


# ============================================================================
# Transfer state machine
# ============================================================================

class TransferStatus(str, Enum):
    """Status of a single workflow within a transfer run."""
    PENDING = "pending"
    VALIDATING = "validating"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TransferStatus.COMPLETED,
    TransferStatus.SKIPPED,
    TransferStatus.FAILED,
    TransferStatus.CANCELLED,
})

_TRANSITIONS: Dict[TransferStatus, frozenset] = {
    TransferStatus.PENDING: frozenset({TransferStatus.VALIDATING, TransferStatus.CANCELLED}),
    TransferStatus.VALIDATING: frozenset({
        TransferStatus.TRANSFERRING,
        TransferStatus.SKIPPED,
        TransferStatus.FAILED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.TRANSFERRING: frozenset({
        TransferStatus.COMPLETED,
        TransferStatus.FAILED,
        TransferStatus.CANCELLED,
    }),
}


@dataclass
class TransferState:
    """Per-workflow record for one transfer run.

    Attributes:
        workflow: Source workflow (never mutated)
        status: Current status
        reason: Why the workflow ended in its terminal status
        validation: Merged validation result, once validated
        attempts: Number of network write attempts
        source_id: Workflow id at the source instance
        target_id: Workflow id created at the target instance
        error_code: Error classification for failed workflows
        duplicate: Whether the workflow was skipped as a duplicate
        timestamps: UTC time each status was entered, keyed by status value
    """
    workflow: Mapping[str, Any]
    status: TransferStatus = TransferStatus.PENDING
    reason: Optional[str] = None
    validation: Optional[ValidationResult] = None
    attempts: int = 0
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    duplicate: bool = False
    timestamps: Dict[str, datetime] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.source_id is None and isinstance(self.workflow, Mapping):
            workflow_id = self.workflow.get("id")
            self.source_id = str(workflow_id) if workflow_id is not None else None
        self.timestamps.setdefault(self.status.value, utcnow())

    @property
    def name(self) -> str:
        return workflow_name(self.workflow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: TransferStatus, reason: Optional[str] = None) -> None:
        """Move to a new status.

        Raises:
            InvalidTransitionError: If the edge is not part of the state machine
        """
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Cannot move workflow '{self.name}' from {self.status.value} to {status.value}"
            )
        self.status = status
        if reason is not None:
            self.reason = reason
        self.timestamps[status.value] = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "reason": self.reason,
            "attempts": self.attempts,
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "errorCode": self.error_code.value if self.error_code else None,
            "duplicate": self.duplicate,
            "validation": self.validation.to_dict() if self.validation else None,
            "timestamps": {k: v.isoformat() for k, v in self.timestamps.items()},
        }


@dataclass(frozen=True)
class ErrorRecord:
    """A per-workflow error kept in the transfer summary."""
    workflow: str
    message: str
    code: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow,
            "message": self.message,
            "code": self.code,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class TransferSummary:
    """Aggregate result of a transfer run.

    Built exactly once via :meth:`build` after every workflow has reached
    a terminal status. ``workflows`` keeps completion order.
    """
    total: int
    transferred: int
    skipped: int
    failed: int
    duplicates: int
    cancelled_count: int
    start_time: datetime
    end_time: datetime
    workflows: List[TransferState] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False
    source: str = "unknown"
    target: str = "unknown"
    options: Dict[str, Any] = field(default_factory=dict)
    plugins_used: List[str] = field(default_factory=list)
    reports: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        states: Iterable[TransferState],
        start_time: datetime,
        end_time: Optional[datetime] = None,
        cancelled: bool = False,
        **kwargs: Any,
    ) -> "TransferSummary":
        """Aggregate terminal transfer states.

        Raises:
            ValueError: If any state is not terminal
        """
        states = list(states)
        pending = [s.name for s in states if not s.is_terminal]
        if pending:
            raise ValueError(f"Cannot summarize non-terminal workflows: {', '.join(pending)}")

        def count(status: TransferStatus) -> int:
            return sum(1 for s in states if s.status is status)

        errors = [
            ErrorRecord(
                workflow=s.name,
                message=s.reason or "Unknown error",
                code=(s.error_code or ErrorCode.UNKNOWN).value,
                timestamp=s.timestamps.get(TransferStatus.FAILED.value, utcnow()),
            )
            for s in states
            if s.status is TransferStatus.FAILED
        ]
        return cls(
            total=len(states),
            transferred=count(TransferStatus.COMPLETED),
            skipped=count(TransferStatus.SKIPPED),
            failed=count(TransferStatus.FAILED),
            duplicates=sum(1 for s in states if s.duplicate),
            cancelled_count=count(TransferStatus.CANCELLED),
            start_time=start_time,
            end_time=end_time or utcnow(),
            workflows=states,
            errors=errors,
            cancelled=cancelled,
            **kwargs,
        )

    @property
    def duration_ms(self) -> int:
        return max(0, int((self.end_time - self.start_time).total_seconds() * 1000))

    def by_status(self, status: TransferStatus) -> List[TransferState]:
        return [s for s in self.workflows if s.status is status]
