"""
Cooperative cancellation signal shared by everything running inside one cycle
"""
import asyncio
import logging
from typing import Any, Awaitable, List, Optional

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised by CancelSignal.guard when the signal trips first"""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or "cancelled"
        super().__init__(self.reason)


class CancelSignal:
    """
    One-shot cancellation flag with a reason.

    A child signal trips whenever its parent trips, so a process-wide shutdown
    signal can be the parent of every per-cycle signal.
    """

    def __init__(self, parent: Optional["CancelSignal"] = None):
        self._event = asyncio.Event()
        self._children: List["CancelSignal"] = []
        self._parent = parent
        self._timer: Optional[asyncio.TimerHandle] = None
        self.reason: Optional[str] = None

        if parent is not None:
            if parent.is_set():
                self.trip(parent.reason)
            else:
                parent._children.append(self)

    def is_set(self) -> bool:
        return self._event.is_set()

    def trip(self, reason: str = "cancelled") -> bool:
        """Set the signal. Returns False if it was already set."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        logger.debug(f"[cancel] Signal tripped: {reason}")
        for child in list(self._children):
            child.trip(reason)
        return True

    async def wait(self):
        await self._event.wait()

    def trip_after(self, delay: float, reason: str = "deadline"):
        """Arm a timer that trips the signal after `delay` seconds."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0.0, delay), self.trip, reason)

    def close(self):
        """Disarm the timer and detach from the parent signal."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await `awaitable` unless the signal trips first.

        When the signal wins, the pending operation is cancelled and awaited
        before OperationCancelled is raised, so nothing keeps running.
        """
        if self.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if not task.cancelled():
            return task.result()
        raise OperationCancelled(self.reason)
