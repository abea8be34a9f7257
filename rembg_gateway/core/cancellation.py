import asyncio
from contextlib import contextmanager
from typing import Iterator

from rembg_gateway.core.exceptions import ProcessCancelled, ToolTimeout


class CancelToken:
    """Explicit cancellation handle passed across every blocking boundary.

    Tokens form a tree: cancelling a token cancels all of its children,
    never its parent. A child may carry its own deadline, after which it
    cancels itself with ``deadline_exceeded`` set.

    Example:
        root = CancelToken()
        with root.child(timeout=5) as token:
            await pipeline.process(image, token)
    """

    def __init__(self, parent: "CancelToken | None" = None):
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._deadline_exceeded = False
        self._children: set[CancelToken] = set()
        self._parent = parent
        self._timer: asyncio.TimerHandle | None = None

        if parent is not None:
            if parent.cancelled:
                self._set(parent.reason, parent.deadline_exceeded)
            else:
                parent._children.add(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline_exceeded

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel this token and its children.

        Returns False if the token was already cancelled.
        """
        return self._set(reason, deadline_exceeded=False)

    def _set(self, reason: str | None, deadline_exceeded: bool) -> bool:
        if self._event.is_set():
            return False

        self._reason = reason
        self._deadline_exceeded = deadline_exceeded
        self._event.set()
        self._cancel_timer()

        for child in list(self._children):
            child._set(reason, deadline_exceeded)
        return True

    def _expire(self, timeout: float) -> None:
        self._set(f"deadline of {timeout:g}s exceeded", deadline_exceeded=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _detach(self) -> None:
        self._cancel_timer()
        if self._parent is not None:
            self._parent._children.discard(self)

    async def wait(self) -> str | None:
        """Block until the token is cancelled and return the reason."""
        await self._event.wait()
        return self._reason

    def error(self) -> ProcessCancelled:
        """Build the exception describing why this token fired."""
        reason = self._reason or "cancelled"
        if self._deadline_exceeded:
            return ToolTimeout(reason)
        return ProcessCancelled(reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()

    @contextmanager
    def child(self, timeout: float | None = None) -> Iterator["CancelToken"]:
        """Derive a child token that is detached again on exit."""
        token = CancelToken(parent=self)
        if timeout is not None and not token.cancelled:
            loop = asyncio.get_running_loop()
            token._timer = loop.call_later(timeout, token._expire, timeout)
        try:
            yield token
        finally:
            token._detach()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancelToken {state}>"
