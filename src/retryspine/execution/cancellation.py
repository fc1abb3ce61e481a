"""Cooperative cancellation tokens.

A :class:`CancellationToken` is an ``asyncio.Event`` with a reason. Retry
sleeps and per-attempt races wait on it, so cancelling wakes them
immediately instead of letting them run out their delay.

Tokens form a tree: ``parent.child()`` returns a token that is cancelled
whenever its parent is, while cancelling the child leaves the parent alone.
``child.detach()`` drops the link again so finished work is not retained
by a long-lived parent. A batch runs on a child of the caller's token so that a fail-fast abort
does not leak into the caller.

Example:
    >>> token = CancellationToken()
    >>> batch_token = token.child()
    >>> token.cancel("user closed the dialog")
    >>> batch_token.cancelled
    True
"""

from __future__ import annotations

import asyncio

from retryspine.core.errors import OperationCancelled


class CancellationToken:
    """Signal shared by everything that should stop together."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._children: list[CancellationToken] = []
        self._parent: CancellationToken | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this token and all of its children. Idempotent."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def child(self) -> CancellationToken:
        token = CancellationToken()
        if self.cancelled:
            token.cancel(self.reason or "cancelled")
        else:
            token._parent = self
            self._children.append(token)
        return token

    def detach(self) -> None:
        """Stop following the parent token; used once the owner of a child is done."""
        if self._parent is not None:
            self._parent._children.remove(self)
            self._parent = None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(f"Operation cancelled: {self.reason}")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising ``OperationCancelled`` on wake-up by cancel."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        self.raise_if_cancelled()

    def __repr__(self) -> str:
        state = f"cancelled={self.reason!r}" if self.cancelled else "active"
        return f"CancellationToken({state})"


async def cancellable_sleep(delay: float, token: CancellationToken | None = None) -> None:
    """``asyncio.sleep`` that aborts early when ``token`` is cancelled."""
    if token is None:
        await asyncio.sleep(delay)
    else:
        await token.sleep(delay)
