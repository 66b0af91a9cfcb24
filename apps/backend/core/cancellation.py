"""
Cancellation tokens threaded through every suspending call.

A token trips when it is cancelled explicitly, when any ancestor is cancelled,
or when its deadline passes. Child tokens take the earlier of their own
timeout and the parent's deadline, so the first signal always wins.
"""

import time
import asyncio
import weakref
from typing import Optional, Awaitable, Any

from core.errors import ScrapeError, ErrorKind


class CancellationToken:
    """Deadline plus explicit cancel, composable parent -> child."""

    def __init__(self, deadline: Optional[float] = None, parent: Optional['CancellationToken'] = None):
        """
        Args:
            deadline: Absolute time.monotonic() value after which the token is tripped
            parent: Token whose cancellation also cancels this one
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self.parent = parent
        self.reason: Optional[str] = None
        self._event = asyncio.Event()
        self._children: 'weakref.WeakSet[CancellationToken]' = weakref.WeakSet()
        if parent is not None:
            parent._children.add(self)
            if parent.reason is not None:
                self.cancel(parent.reason)

    @classmethod
    def with_deadline(cls, seconds: float) -> 'CancellationToken':
        """Top-level token that trips `seconds` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def with_timeout(self, seconds: Optional[float]) -> 'CancellationToken':
        """Child token bounded by min(parent deadline, now + seconds)."""
        deadline = time.monotonic() + seconds if seconds is not None else None
        return CancellationToken(deadline=deadline, parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        if self.reason is None:
            self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel_message(self) -> str:
        if self.reason is not None:
            return f"Operation cancelled: {self.reason}"
        return "Operation timeout: deadline exceeded"

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ScrapeError(ErrorKind.TIMEOUT, self.cancel_message())

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early (and raising) if the token trips first."""
        self.raise_if_cancelled()
        await self.guard(asyncio.sleep(max(0.0, seconds)))

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await `awaitable` unless the token trips first.

        The awaitable is cancelled when the token fires or the deadline
        passes, and a timeout ScrapeError is raised in its place.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            # lost the race to cancellation
            pass
        raise ScrapeError(ErrorKind.TIMEOUT, self.cancel_message())

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled}, remaining={self.remaining()})"
