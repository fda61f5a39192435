"""
Bounded-concurrency worker pool.

Runs an item processor over every item of a batch, never with more than
`limit` processor calls in flight, and streams results in completion order.
Every dispatched item yields exactly one ItemResult, whether it succeeded,
failed, raised, or was cancelled.
"""
import asyncio
import functools
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional

from core.cancellation import CancelSignal, OperationCancelled
from core.models import ItemResult, WorkItem

logger = logging.getLogger(__name__)

ProcessFn = Callable[[WorkItem, CancelSignal], Awaitable[ItemResult]]


class ConcurrencyBudget:
    """Counting permit for in-flight item processing"""

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak = 0

    @property
    def available(self) -> int:
        return self.limit - self.in_flight

    async def acquire(self, cancel: Optional[CancelSignal] = None) -> bool:
        """
        Wait for a free slot.

        Returns False without holding a slot if `cancel` trips first.
        """
        if cancel is None:
            await self._semaphore.acquire()
        else:
            try:
                await cancel.guard(self._semaphore.acquire())
            except OperationCancelled:
                return False

        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return True

    def release(self):
        if self.in_flight <= 0:
            raise RuntimeError("release() without matching acquire()")
        self.in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, cancel: Optional[CancelSignal] = None):
        """Scoped acquisition; yields whether a slot is held and always releases it."""
        acquired = await self.acquire(cancel)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


class WorkerPool:
    """Dispatches a batch over a bounded number of concurrent workers"""

    def __init__(self, limit: int, grace_period: Optional[float] = None):
        if limit < 1:
            raise ValueError(f"concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        # Seconds to wait for cooperative completion after cancellation
        # before remaining workers are aborted. None waits indefinitely.
        self.grace_period = grace_period
        self.last_budget: Optional[ConcurrencyBudget] = None

    async def run(
        self,
        batch: Iterable[WorkItem],
        cancel: CancelSignal,
        process: ProcessFn,
    ) -> AsyncIterator[ItemResult]:
        """
        Process every item and yield results as they complete.

        Returns only after every worker task has finished; worker tasks never
        outlive this generator, even if the consumer stops early.
        """
        items = list(batch)
        budget = ConcurrencyBudget(self.limit)
        self.last_budget = budget

        if not items:
            return

        results: asyncio.Queue = asyncio.Queue()
        tasks: List[asyncio.Task] = []
        for item in items:
            task = asyncio.create_task(
                self._work(item, budget, cancel, process),
                name=f"worker-{item.id}",
            )
            task.add_done_callback(functools.partial(self._collect, item, results, cancel))
            tasks.append(task)

        logger.debug(f"[worker_pool] Dispatched {len(items)} item(s) with limit={self.limit}")

        enforcer = None
        if self.grace_period is not None:
            enforcer = asyncio.create_task(self._enforce_grace(tasks, cancel))

        try:
            for _ in range(len(items)):
                yield await results.get()
        finally:
            if enforcer is not None:
                enforcer.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if enforcer is not None:
                await asyncio.gather(enforcer, return_exceptions=True)

    async def _work(
        self,
        item: WorkItem,
        budget: ConcurrencyBudget,
        cancel: CancelSignal,
        process: ProcessFn,
    ) -> ItemResult:
        async with budget.slot(cancel) as acquired:
            if not acquired or cancel.is_set():
                return ItemResult.cancelled(item.id, cancel.reason or "cancelled")

            logger.debug(f"[worker_pool] Slot acquired for {item.id} ({budget.in_flight}/{budget.limit} in flight)")
            start_time = time.monotonic()
            try:
                result = await process(item, cancel)
            except OperationCancelled as e:
                return ItemResult.cancelled(item.id, e.reason, self._elapsed_ms(start_time))
            except Exception as e:
                logger.error(f"[worker_pool] Processor raised for item {item.id}: {e}", exc_info=True)
                return ItemResult.failure(
                    item.id,
                    f"{type(e).__name__}: {e}",
                    self._elapsed_ms(start_time),
                )

            if not isinstance(result, ItemResult):
                return ItemResult.failure(
                    item.id,
                    f"processor returned {type(result).__name__}, expected ItemResult",
                    self._elapsed_ms(start_time),
                )
            if result.item_id != item.id:
                return ItemResult.failure(
                    item.id,
                    f"processor returned result for {result.item_id!r}",
                    self._elapsed_ms(start_time),
                )
            return result

    @staticmethod
    def _collect(item: WorkItem, results: asyncio.Queue, cancel: CancelSignal, task: asyncio.Task):
        """Turn a finished worker task into exactly one result"""
        if task.cancelled():
            result = ItemResult.cancelled(item.id, cancel.reason or "aborted")
        elif task.exception() is not None:
            exc = task.exception()
            result = ItemResult.failure(item.id, f"{type(exc).__name__}: {exc}")
        else:
            result = task.result()
        results.put_nowait(result)

    async def _enforce_grace(self, tasks: List[asyncio.Task], cancel: CancelSignal):
        await cancel.wait()
        await asyncio.sleep(self.grace_period)

        stragglers = [task for task in tasks if not task.done()]
        if stragglers:
            logger.warning(
                f"[worker_pool] Grace period of {self.grace_period}s elapsed; "
                f"aborting {len(stragglers)} item(s)"
            )
            for task in stragglers:
                task.cancel()

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
