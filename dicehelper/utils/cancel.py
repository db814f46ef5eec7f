"""Cooperative cancellation for the polling worker.

The scheduler owns one ``CancellationToken`` per process.  Signal handlers
call ``cancel()``; the cycle polls ``cancelled`` at each row boundary, never
in the middle of a dice send.

Usage:
    token = CancellationToken()
    loop.add_signal_handler(signal.SIGTERM, token.cancel)

    for row in batch:
        if token.cancelled:
            break
        ...
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger("dicehelper.cancel")


class CancellationToken:
    """One-shot shutdown signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "shutdown requested") -> None:
        """Signal cancellation.  Repeated calls keep the first reason."""
        if self._event.is_set():
            logger.debug("Cancellation already signalled (%s)", self._reason)
            return
        self._reason = reason
        self._event.set()
        logger.info("Cancellation signalled: %s", reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()
