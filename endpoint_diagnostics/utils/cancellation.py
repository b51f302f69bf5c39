"""Cooperative cancellation tokens.

A :class:`CancellationToken` is passed explicitly to every suspending call in
the engine (probes, retry back-off, pipeline sinks). Tokens form a tree: a
child token is cancelled when its parent is, but cancelling a child leaves the
parent untouched. This lets an orchestration pass abandon one probe at the
deadline without affecting the caller's token.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional


class OperationCancelledError(Exception):
    """Raised when work observes a cancelled token."""

    def __init__(self, reason: str = "operation cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Cancellation signal shared between a caller and the work it started.

    Parameters
    ----------
    parent: CancellationToken, optional
        Token whose cancellation propagates to this one.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._children: List[CancellationToken] = []
        self._parent = parent
        if parent is not None:
            parent._children.append(self)
            if parent.is_cancelled:
                self.cancel(parent.reason or "parent cancelled")

    @classmethod
    def none(cls) -> "CancellationToken":
        """Return a fresh token that nobody will cancel."""
        return cls()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def child(self) -> "CancellationToken":
        """Create a token linked to this one."""
        return CancellationToken(parent=self)

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Signal cancellation to this token and all of its children."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)

    def detach(self) -> None:
        """Unlink from the parent so a long-lived parent does not retain it."""
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason or "operation cancelled")

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first.

        Raises
        ------
        OperationCancelledError
            If the token is cancelled before or during the sleep.
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh, never-cancelled token."""
    return token if token is not None else CancellationToken.none()
