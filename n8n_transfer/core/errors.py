"""Error taxonomy for workflow transfers.

Per-workflow failures are classified into stable error codes that end up in
the transfer summary and reports. Only configuration-level errors abort a
whole run.
"""

from enum import Enum

import httpx


class ErrorCode(str, Enum):
    """Stable error codes recorded in transfer summaries."""
    AUTH_INVALID = "ERR_AUTH_INVALID"
    NOT_FOUND = "ERR_NOT_FOUND"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    SERVER = "ERR_SERVER"
    TIMEOUT = "ERR_TIMEOUT"
    NETWORK = "ERR_NETWORK"
    VALIDATION = "ERR_VALIDATION"
    PLUGIN = "ERR_PLUGIN"
    UNKNOWN = "ERR_UNKNOWN"


class TransferError(Exception):
    """Base class for transfer errors."""


class TransferConfigurationError(TransferError):
    """Run-level misconfiguration; aborts before any workflow is processed."""


class InvalidTransitionError(TransferError):
    """Raised when a TransferState is moved along an illegal edge."""


class PluginError(Exception):
    """Base class for plugin registration errors."""


class DuplicatePluginError(PluginError, ValueError):
    """A plugin with the same (case-insensitive) name is already registered."""


class MissingMethodError(PluginError, TypeError):
    """A plugin lacks the capability method required by its kind."""


class N8NClientError(TransferError):
    """Error returned by the n8n API or raised by the transport.

    Attributes:
        status_code: HTTP status code (503 for transport failures)
        message: Human-readable error message
        context: Raw error details
        timeout: Whether the failure was a timeout
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        context: str = "",
        timeout: bool = False,
        transport: bool = False,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.context = context
        self.timeout = timeout
        self.transport = transport
        super().__init__(message)


def classify_error(error: BaseException) -> ErrorCode:
    """Map an exception to an error code.

    Args:
        error: Exception raised while processing a workflow

    Returns:
        ErrorCode describing the failure class
    """
    if isinstance(error, N8NClientError):
        if error.timeout:
            return ErrorCode.TIMEOUT
        if error.transport:
            return ErrorCode.NETWORK
        status = error.status_code
        if status in (401, 403):
            return ErrorCode.AUTH_INVALID
        if status == 404:
            return ErrorCode.NOT_FOUND
        if status == 429:
            return ErrorCode.RATE_LIMITED
        if 500 <= status < 600:
            return ErrorCode.SERVER
        if 400 <= status < 500:
            return ErrorCode.VALIDATION
        return ErrorCode.UNKNOWN

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ErrorCode.TIMEOUT
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorCode.NETWORK
    if isinstance(error, ValueError):
        return ErrorCode.VALIDATION
    return ErrorCode.UNKNOWN


RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.SERVER,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK,
})


def is_retryable(error: BaseException) -> bool:
    """Whether a failed request is worth retrying.

    Network failures, timeouts, rate limiting (429) and 5xx responses are
    retryable; authentication failures and other 4xx responses are not.
    """
    return classify_error(error) in RETRYABLE_CODES
