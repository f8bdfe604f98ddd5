"""Structured logging configuration for n8n-transfer.

This module provides structured logging with run-scoped context: every event
emitted while a transfer runs carries its ``run_id`` and, inside a worker,
the name of the workflow being processed. Instance URLs are masked and API
keys are redacted before events are rendered.
"""

import logging
import re
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.types import FilteringBoundLogger

# Context variables for run tracking
_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)
_workflow: ContextVar[str | None] = ContextVar("workflow", default=None)
_run_context: ContextVar[dict[str, Any]] = ContextVar("run_context", default={})

_SECRET_KEYS = re.compile(r"(api[_-]?key|token|password|secret|authorization)", re.IGNORECASE)
_URL_KEYS = frozenset({"url", "source", "target", "base_url", "source_url", "target_url"})


def mask_url(url: str) -> str:
    """Mask credentials and query string of a URL for logging.

    Args:
        url: URL to mask

    Returns:
        URL with user info replaced by ``***`` and the query dropped
    """
    if not isinstance(url, str) or "://" not in url:
        return url
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    if parts.username or parts.password:
        netloc = f"***@{netloc}"
    query = "***" if parts.query else ""
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))


class StructuredLogger:
    """Structured logging manager.

    Configures structlog with JSON or console output and the run-context
    processors.

    Example:
        >>> logger = StructuredLogger()
        >>> logger.setup_logging(json_format=False)
        >>> log = logger.get_logger("n8n_transfer")
        >>> log.info("transfer_started", total=12)
    """

    def __init__(self):
        self._configured = False

    @property
    def configured(self) -> bool:
        return self._configured

    def setup_logging(
        self,
        json_format: bool = True,
        log_level: str = "INFO",
        extra_processors: list | None = None,
    ) -> None:
        """Setup structured logging configuration.

        Args:
            json_format: Whether to output JSON format (vs. console)
            log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            extra_processors: Additional structlog processors
        """
        if self._configured:
            return

        level = getattr(logging, log_level.upper(), None)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {log_level}")

        logging.basicConfig(
            format="%(message)s",
            stream=sys.stderr,
            level=level,
        )
        logging.getLogger().setLevel(level)

        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            self._add_run_context,
            self._redact_secrets,
        ]

        if extra_processors:
            processors.extend(extra_processors)

        processors.extend([
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ])

        if json_format:
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer())

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        self._configured = True

    def _add_run_context(
        self,
        logger: FilteringBoundLogger,
        method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        """Add run ID, workflow and extra run context to log events."""
        run_id = _run_id.get()
        if run_id and "run_id" not in event_dict:
            event_dict["run_id"] = run_id
        workflow = _workflow.get()
        if workflow and "workflow" not in event_dict:
            event_dict["workflow"] = workflow
        context = _run_context.get()
        if context:
            for key, value in context.items():
                event_dict.setdefault(key, value)
        return event_dict

    def _redact_secrets(
        self,
        logger: FilteringBoundLogger,
        method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        """Redact API keys and mask instance URLs."""
        for key, value in list(event_dict.items()):
            if key == "event":
                continue
            if _SECRET_KEYS.search(key):
                event_dict[key] = "***"
            elif key in _URL_KEYS and isinstance(value, str):
                event_dict[key] = mask_url(value)
        return event_dict

    def get_logger(self, name: str) -> FilteringBoundLogger:
        """Get a logger instance.

        Args:
            name: Logger name (usually module name)

        Returns:
            Configured structlog logger
        """
        if not self._configured:
            self.setup_logging()
        return structlog.get_logger(name)


# Global logger instance
_structured_logger: StructuredLogger | None = None


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name

    Returns:
        Structured logger instance
    """
    global _structured_logger
    if _structured_logger is None:
        _structured_logger = StructuredLogger()
    return _structured_logger.get_logger(name)


def setup_logging(
    json_format: bool = True,
    log_level: str = "INFO",
    **kwargs: Any,
) -> StructuredLogger:
    """Setup structured logging globally.

    Args:
        json_format: Whether to output JSON
        log_level: Minimum log level
        **kwargs: Additional configuration

    Returns:
        Configured StructuredLogger
    """
    global _structured_logger
    structlog.reset_defaults()
    _structured_logger = StructuredLogger()
    _structured_logger.setup_logging(
        json_format=json_format,
        log_level=log_level,
        **kwargs,
    )
    return _structured_logger


def setup_logging_from_settings(settings: Any) -> StructuredLogger:
    """Setup logging from ``TransferSettings``."""
    return setup_logging(
        json_format=settings.log_format == "json",
        log_level=settings.log_level,
    )


# Context management functions

def set_run_id(run_id: str) -> None:
    _run_id.set(run_id)


def get_run_id() -> str | None:
    return _run_id.get()


def clear_run_context() -> None:
    """Clear run ID, workflow and extra run context."""
    _run_id.set(None)
    _workflow.set(None)
    _run_context.set({})


@contextmanager
def workflow_scope(name: str) -> Generator[None, None, None]:
    """Context manager binding the workflow being processed.

    Args:
        name: Workflow name

    Example:
        >>> with workflow_scope("Daily report"):
        ...     logger.info("workflow_validating")
    """
    token = _workflow.set(name)
    try:
        yield
    finally:
        _workflow.reset(token)


class LogContext:
    """Context manager for combined run logging context.

    Example:
        >>> with LogContext(run_id="3f2a", dry_run=True):
        ...     logger.info("transfer_started")
    """

    def __init__(
        self,
        run_id: str | None = None,
        workflow: str | None = None,
        **context: Any,
    ):
        self.run_id = run_id
        self.workflow = workflow
        self.context = context
        self.tokens = []

    def __enter__(self) -> "LogContext":
        if self.run_id:
            self.tokens.append(("run", _run_id.set(self.run_id)))
        if self.workflow:
            self.tokens.append(("workflow", _workflow.set(self.workflow)))
        if self.context:
            merged = {**_run_context.get(), **self.context}
            self.tokens.append(("ctx", _run_context.set(merged)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for name, token in reversed(self.tokens):
            if name == "run":
                _run_id.reset(token)
            elif name == "workflow":
                _workflow.reset(token)
            elif name == "ctx":
                _run_context.reset(token)
        self.tokens = []
