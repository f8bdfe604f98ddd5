"""Cooperative cancellation for transfer runs.

A ``CancellationToken`` is passed into a run and checked before each
workflow is dispatched. ``SignalHandlers`` cancels a token on SIGINT or
SIGTERM for the duration of a run.
"""

import asyncio
import signal
from typing import List, Optional

from n8n_transfer.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Cancellation flag shared between a run and its cancel sources.

    The token is backed by an ``asyncio.Event`` so a run can also await it.
    Cancelling is idempotent; the first reason wins.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation.

        Returns:
            True if this call cancelled the token, False if it already was
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        logger.info("cancellation_requested", reason=reason)
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self.is_cancelled else "active"
        return f"<CancellationToken {state}>"


class SignalHandlers:
    """Installs signal handlers that cancel a token.

    Handlers are registered with ``loop.add_signal_handler`` and must be
    removed with :meth:`remove`, typically in a ``finally`` block. On
    platforms without signal support installation is logged and skipped.

    Example:
        >>> handlers = SignalHandlers(token)
        >>> handlers.install()
        >>> try:
        ...     await run()
        ... finally:
        ...     handlers.remove()
    """

    def __init__(
        self,
        token: CancellationToken,
        signals: tuple = DEFAULT_SIGNALS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.token = token
        self.signals = signals
        self._loop = loop
        self._installed: List[int] = []

    @property
    def installed(self) -> List[int]:
        return list(self._installed)

    def _handle(self, sig: int) -> None:
        logger.info("received_shutdown_signal", signal=int(sig))
        self.token.cancel(reason=f"signal {signal.Signals(sig).name}")

    def install(self) -> List[int]:
        """Install handlers for the configured signals.

        Returns:
            Signals whose handlers were installed
        """
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self._handle, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning("signal_handler_unavailable", signal=int(sig), error=str(e))
                continue
            self._installed.append(sig)
        return self.installed

    def remove(self) -> None:
        """Remove every handler installed by :meth:`install`."""
        if self._loop is None:
            return
        for sig in self._installed:
            try:
                self._loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning("signal_handler_remove_failed", signal=int(sig), error=str(e))
        self._installed = []
