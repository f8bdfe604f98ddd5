"""Formatting helpers shared by the reporters."""

from typing import Any, Dict, List

from n8n_transfer.core.models import TransferState, tag_names


def format_duration(milliseconds: int) -> str:
    """Format a duration as ``Xh Ym``, ``Xm Ys`` or ``Xs``."""
    seconds = max(0, int(milliseconds)) // 1000
    minutes, hours = seconds // 60, seconds // 3600
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_rate(count: int, total: int) -> str:
    """Percentage string with two decimals, ``"0.00%"`` for an empty run."""
    if total == 0:
        return "0.00%"
    return f"{count / total * 100:.2f}%"


def workflow_row(state: TransferState) -> Dict[str, Any]:
    """Flatten a transfer state into the per-workflow report fields."""
    workflow = state.workflow
    nodes = workflow.get("nodes")
    tags: List[str] = tag_names(workflow.get("tags"))
    return {
        "id": state.source_id,
        "name": state.name,
        "status": state.status.value,
        "nodes": len(nodes) if isinstance(nodes, list) else 0,
        "tags": tags,
        "active": bool(workflow.get("active", False)),
        "targetId": state.target_id,
        "reason": state.reason,
    }
