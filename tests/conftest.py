"""Shared fixtures for n8n-transfer tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from n8n_transfer.config import TransferSettings
from n8n_transfer.core.errors import ErrorCode
from n8n_transfer.core.models import TransferState, TransferStatus, TransferSummary
from n8n_transfer.core.retry import RetryPolicy
from n8n_transfer.plugins.registry import PluginRegistry, reset_registry


def make_workflow(
    name: str,
    workflow_id: Optional[str] = None,
    tags: Optional[List[str]] = None,
    nodes: Optional[List[Dict[str, Any]]] = None,
    connections: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a valid two-node workflow unless nodes/connections are given."""
    if nodes is None:
        nodes = [
            {
                "id": "n1",
                "name": "Start",
                "type": "n8n-nodes-base.manualTrigger",
                "position": [0, 0],
                "parameters": {},
            },
            {
                "id": "n2",
                "name": "Set",
                "type": "n8n-nodes-base.set",
                "position": [200, 0],
                "parameters": {"value": name},
            },
        ]
        if connections is None:
            connections = {"n1": {"main": [[{"node": "n2", "type": "main", "index": 0}]]}}
    workflow: Dict[str, Any] = {
        "id": workflow_id or f"src-{name.lower().replace(' ', '-')}",
        "name": name,
        "nodes": nodes,
        "connections": connections or {},
        "active": False,
        "settings": {"executionOrder": "v1"},
        "tags": [{"id": f"s-{tag}", "name": tag} for tag in (tags or [])],
    }
    workflow.update(extra)
    return workflow


class FakeN8NClient:
    """In-memory stand-in for ``N8NClient``.

    ``create_failures`` is consumed one entry per ``create_workflow`` call;
    an exception entry is raised, ``None`` lets the call succeed. ``gate``
    blocks writes until set. ``active``/``max_active`` count concurrent writes.
    """

    def __init__(
        self,
        workflows: Optional[List[Dict[str, Any]]] = None,
        tags: Optional[List[Dict[str, Any]]] = None,
        label: str = "https://fake.n8n.local",
    ) -> None:
        self.workflows = list(workflows or [])
        self.tags = list(tags or [])
        self.label = label
        self.connection: Dict[str, Any] = {"success": True, "message": "Connection successful"}
        self.create_failures: List[Optional[Exception]] = []
        self.create_delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.created: List[Dict[str, Any]] = []
        self.create_calls = 0
        self.tag_lists = 0
        self.started = 0
        self.active = 0
        self.max_active = 0

    async def test_connection(self) -> Dict[str, Any]:
        return dict(self.connection)

    async def list_workflows(self) -> List[Dict[str, Any]]:
        return [dict(w) for w in self.workflows]

    async def list_tags(self) -> List[Dict[str, Any]]:
        self.tag_lists += 1
        return [dict(t) for t in self.tags]

    async def create_tag(self, name: str) -> Dict[str, Any]:
        tag = {"id": f"tag-{len(self.tags) + 1}", "name": name}
        self.tags.append(tag)
        return tag

    async def create_workflow(self, workflow, tag_ids=None) -> Dict[str, Any]:
        self.create_calls += 1
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.create_delay:
                await asyncio.sleep(self.create_delay)
            if self.create_failures:
                error = self.create_failures.pop(0)
                if error is not None:
                    raise error

            tags = [t for t in self.tags if t["id"] in (tag_ids or [])]
            created = {**workflow, "id": f"target-{len(self.created) + 1}", "tags": tags}
            self.created.append(created)
            self.workflows.append(created)
            return created
        finally:
            self.active -= 1


@pytest.fixture(autouse=True)
def _reset_global_registry():
    """Reset the global plugin registry between tests."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def registry() -> PluginRegistry:
    """Registry holding fresh built-in plugins."""
    registry = PluginRegistry()
    registry.register_builtin_plugins()
    return registry


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def transfer_settings() -> TransferSettings:
    return TransferSettings(parallelism=3, max_attempts=3, backoff_base=0.0, request_delay=0.0)


@pytest.fixture
def workflow_factory():
    """Factory building workflow dicts, see ``make_workflow``."""
    return make_workflow


@pytest.fixture
def client_factory():
    """Factory building ``FakeN8NClient`` instances."""
    return FakeN8NClient


START_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_state(
    workflow: Dict[str, Any],
    status: TransferStatus,
    reason: Optional[str] = None,
    target_id: Optional[str] = None,
    error_code: Optional[ErrorCode] = None,
    duplicate: bool = False,
) -> TransferState:
    """Drive a TransferState along legal edges to a terminal status."""
    state = TransferState(workflow=workflow)
    if status is TransferStatus.CANCELLED:
        state.transition(status, reason=reason or "cancelled")
        return state
    state.transition(TransferStatus.VALIDATING)
    if status is TransferStatus.COMPLETED:
        state.transition(TransferStatus.TRANSFERRING)
        state.target_id = target_id
    state.error_code = error_code
    state.duplicate = duplicate
    state.transition(status, reason=reason)
    return state


@pytest.fixture
def state_factory():
    return make_state


@pytest.fixture
def sample_summary(workflow_factory) -> TransferSummary:
    """Summary of a finished run with one workflow per terminal status."""
    states = [
        make_state(workflow_factory("Sync CRM", tags=["crm"]), TransferStatus.COMPLETED, target_id="t-1"),
        make_state(
            workflow_factory("Nightly Backup"),
            TransferStatus.SKIPPED,
            reason="Duplicate workflow found",
            duplicate=True,
        ),
        make_state(
            workflow_factory("Broken | Flow"),
            TransferStatus.FAILED,
            reason="n8n API Error (500): boom",
            error_code=ErrorCode.SERVER,
        ),
        make_state(workflow_factory("Later"), TransferStatus.CANCELLED),
    ]
    return TransferSummary.build(
        states,
        start_time=START_TIME,
        end_time=START_TIME + timedelta(seconds=65),
        source="https://source.example.com",
        target="https://target.example.com",
        options={"dry_run": False},
        plugins_used=["integrity-validator", "standard-deduplicator"],
    )
