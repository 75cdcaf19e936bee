"""Cooperative cancellation token shared through the execution context."""

from __future__ import annotations

import asyncio
import logging

from .errors import CancellationError

__all__ = ["CancellationToken"]

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """One-way flag observed before every suspension point.

    Example:
        token = CancellationToken()
        token.cancel("user pressed stop")
        token.raise_if_cancelled()  # raises CancellationError
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Mark the token cancelled; later calls keep the first reason."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        LOGGER.debug("Cancellation requested: %s", reason or "no reason given")
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(reason=self._reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
