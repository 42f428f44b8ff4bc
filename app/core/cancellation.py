"""
Cooperative cancellation tokens.

A single token is threaded from the top-level search call through the discovery
scanner, every matcher and every circuit breaker execution. Tokens can be combined
(first signal wins) and derived from a timeout.

Usage:
    token = CancellationToken()
    timeout = CancellationToken.after(5.0)
    combined = CancellationToken.any(token, timeout)
    try:
        result = await combined.run(fetch(combined))
    finally:
        timeout.dispose()
        combined.dispose()
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from app.core.errors import OperationCancelledError

T = TypeVar("T")

TIMEOUT_REASON = "timeout"

CancelCallback = Callable[["CancellationToken"], Any]


class CancellationToken:
    def __init__(self) -> None:
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._callbacks: List[CancelCallback] = []
        self._unlinks: List[Callable[[], None]] = []
        self._timer: Optional[asyncio.TimerHandle] = None

    @classmethod
    def any(cls, *tokens: Optional["CancellationToken"]) -> "CancellationToken":
        """Token cancelled as soon as one of the given tokens is."""
        combined = cls()
        for token in tokens:
            if token is not None:
                combined._unlinks.append(token.on_cancel(lambda source: combined.cancel(source.reason)))
        return combined

    @classmethod
    def after(cls, seconds: float) -> "CancellationToken":
        """Token cancelled with the timeout reason once `seconds` elapse. Needs a running loop."""
        token = cls()
        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(seconds, token.cancel, TIMEOUT_REASON)
        return token

    @property
    def is_cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = "cancelled") -> None:
        if self._reason is not None:
            return
        self._reason = reason or "cancelled"
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def on_cancel(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if self.is_cancelled:
            callback(self)
            return lambda: None

        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise OperationCancelledError(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep unless cancelled first, in which case OperationCancelledError is raised."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it if the token fires first."""
        if self.is_cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelledError(self._reason or "cancelled")

    def dispose(self) -> None:
        """Detach from parent tokens and stop any pending timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        unlinks, self._unlinks = self._unlinks, []
        for unlink in unlinks:
            unlink()


async def sleep(seconds: float, token: Optional[CancellationToken] = None) -> None:
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)
