"""Observability package for n8n-transfer.

Structured logging with run-scoped context (run ID, workflow name) and
masking of instance URLs and API keys.
"""

from n8n_transfer.observability.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    mask_url,
    setup_logging,
    workflow_scope,
)

__all__ = [
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "mask_url",
    "setup_logging",
    "workflow_scope",
]
