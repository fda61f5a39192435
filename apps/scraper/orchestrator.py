"""
Scrape cycle orchestrator with fixed-period scheduling
"""
import asyncio
import logging
import time
from collections import deque
from contextlib import aclosing
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, Optional, Set

import metrics
from app.config import ScraperConfig
from core.cancellation import CancelSignal, OperationCancelled
from core.models import ItemResult, ResultStatus
from core.net import HTTPClient
from core.worker_pool import WorkerPool
from crawler.base import ItemProcessor, JobSource, ResultSink
from crawler.job_source import BackendJobSource, JobSourceError
from crawler.product_page import ProductPageProcessor
from crawler.result_sink import BackendResultSink, ResultSinkError

logger = logging.getLogger(__name__)

HISTORY_SIZE = 50


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    DONE = "done"


class CycleOutcome:
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FETCH_FAILED = "fetch_failed"
    SHUTDOWN = "shutdown"
    ERROR = "error"


class CycleReport:
    """What happened during one cycle"""

    def __init__(self, cycle_id: int):
        self.cycle_id = cycle_id
        self.state = CycleState.IDLE
        self.outcome: Optional[str] = None
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self.items = 0
        self.results: Dict[str, int] = {status.value: 0 for status in ResultStatus}
        self.forwarded = 0
        self.skipped = 0
        self.forward_failures = 0
        self.error: Optional[str] = None
        self.cancel_reason: Optional[str] = None
        self.duration_ms = 0

    @property
    def results_total(self) -> int:
        return sum(self.results.values())

    @property
    def ok(self) -> bool:
        return self.outcome == CycleOutcome.COMPLETED

    def record_result(self, result: ItemResult):
        self.results[result.status.value] += 1

    def to_dict(self) -> Dict:
        return {
            "cycle_id": self.cycle_id,
            "state": self.state.value,
            "outcome": self.outcome,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "items": self.items,
            "results": dict(self.results),
            "forwarded": self.forwarded,
            "skipped": self.skipped,
            "forward_failures": self.forward_failures,
            "error": self.error,
            "cancel_reason": self.cancel_reason,
            "duration_ms": self.duration_ms,
        }


class TickSchedule:
    """
    Fixed-period tick grid anchored at the first tick.

    Ticks do not depend on how long cycles take. A cycle that overruns one
    or more ticks leaves exactly one tick pending; the missed ones are dropped.
    """

    def __init__(self, period: float, start: float):
        if period <= 0:
            raise ValueError("period must be positive")
        self.period = period
        self.next_tick = start + period

    def delay(self, now: float) -> float:
        """Seconds until the pending tick (0 if it is already due)."""
        return max(0.0, self.next_tick - now)

    def advance(self, now: float):
        """Consume the pending tick if it is due."""
        if now < self.next_tick:
            return
        missed = int((now - self.next_tick) // self.period) + 1
        self.next_tick += missed * self.period


class CycleCoordinator:
    """
    Runs scrape cycles one at a time:
    fetch batch -> dispatch to worker pool -> forward results as they complete.
    """

    def __init__(
        self,
        config: ScraperConfig,
        job_source: JobSource,
        processor: ItemProcessor,
        sink: ResultSink,
    ):
        self.config = config
        self.job_source = job_source
        self.processor = processor
        self.sink = sink
        self.pool = WorkerPool(config.max_concurrent, grace_period=config.grace_period)

        self.history: Deque[CycleReport] = deque(maxlen=HISTORY_SIZE)
        self.current: Optional[CycleReport] = None
        self._cycle_count = 0
        self._cycle_lock = asyncio.Lock()
        self._shutdown = CancelSignal()
        self._run_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self.history[-1] if self.history else None

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle. Never raises for fetch, item or forwarding failures."""
        async with self._cycle_lock:
            self._cycle_count += 1
            report = CycleReport(self._cycle_count)
            self.current = report

            cancel = CancelSignal(parent=self._shutdown)
            cancel.trip_after(self.config.cycle_deadline, "deadline")
            start_time = time.monotonic()

            logger.info(f"[orchestrator] Scrape cycle {report.cycle_id} started")
            try:
                await self._execute(report, cancel)
            finally:
                cancel.close()
                if report.outcome is None:
                    report.outcome = CycleOutcome.ERROR
                report.state = CycleState.DONE
                report.finished_at = datetime.now(timezone.utc)
                report.duration_ms = int((time.monotonic() - start_time) * 1000)
                self.current = None
                self.history.append(report)
                metrics.record_cycle(report.outcome, report.duration_ms / 1000.0)

            logger.info(
                f"[orchestrator] Scrape cycle {report.cycle_id} {report.outcome}: "
                f"items={report.items}, results={report.results}, forwarded={report.forwarded}, "
                f"forward_failures={report.forward_failures} ({report.duration_ms}ms)"
            )
            return report

    async def _execute(self, report: CycleReport, cancel: CancelSignal):
        report.state = CycleState.FETCHING
        try:
            batch = await cancel.guard(self.job_source.fetch_batch(timeout=self.config.cycle_deadline))
        except OperationCancelled as e:
            report.outcome = self._cancel_outcome()
            report.cancel_reason = e.reason
            report.error = f"fetch cancelled: {e.reason}"
            logger.warning(f"[orchestrator] Product fetch cancelled ({e.reason}); skipping cycle")
            return
        except JobSourceError as e:
            report.outcome = CycleOutcome.FETCH_FAILED
            report.error = str(e)[:500]
            logger.error(f"[orchestrator] Failed to get products: {e}")
            return
        except Exception as e:
            report.outcome = CycleOutcome.FETCH_FAILED
            report.error = str(e)[:500]
            logger.error(f"[orchestrator] Unexpected error fetching products: {e}", exc_info=True)
            return

        report.items = len(batch)
        report.state = CycleState.DISPATCHING

        forwards: Set[asyncio.Task] = set()
        try:
            async with aclosing(self.pool.run(batch, cancel, self.processor.process)) as results:
                async for result in results:
                    report.state = CycleState.COLLECTING
                    report.record_result(result)
                    metrics.record_item(result.status.value)
                    forwards.add(asyncio.create_task(self._forward(result, report)))
        finally:
            if forwards:
                await asyncio.gather(*forwards, return_exceptions=True)

        if cancel.is_set():
            report.outcome = self._cancel_outcome()
            report.cancel_reason = cancel.reason
        else:
            report.outcome = CycleOutcome.COMPLETED

    async def _forward(self, result: ItemResult, report: CycleReport):
        try:
            sent = await self.sink.forward(result)
        except ResultSinkError as e:
            report.forward_failures += 1
            metrics.record_forward("failed")
            logger.error(f"[orchestrator] {e}")
            return
        except Exception as e:
            report.forward_failures += 1
            metrics.record_forward("failed")
            logger.error(f"[orchestrator] Unexpected error forwarding {result.item_id}: {e}", exc_info=True)
            return

        if sent:
            report.forwarded += 1
            metrics.record_forward("sent")
        else:
            report.skipped += 1
            metrics.record_forward("skipped")

    def _cancel_outcome(self) -> str:
        return CycleOutcome.SHUTDOWN if self._shutdown.is_set() else CycleOutcome.TIMED_OUT

    def request_run(self):
        """Queue one extra cycle as soon as the current one (if any) finishes"""
        self._run_requested.set()

    async def _wait_for_tick(self, delay: float):
        if self._run_requested.is_set() or self._shutdown.is_set():
            self._run_requested.clear()
            return

        waiters = [
            asyncio.ensure_future(self._shutdown.wait()),
            asyncio.ensure_future(self._run_requested.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        self._run_requested.clear()

    async def scheduler_loop(self):
        """Background scheduler loop; keeps running regardless of cycle outcomes"""
        logger.info(
            f"[orchestrator] Scheduler started: backend={self.config.backend_api} "
            f"interval={self.config.scrape_period}s max_concurrent={self.config.max_concurrent}"
        )
        loop = asyncio.get_running_loop()
        schedule = TickSchedule(self.config.scrape_period, loop.time())

        while not self._shutdown.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"[orchestrator] Scheduler error: {e}", exc_info=True)

            if self._shutdown.is_set():
                break

            delay = schedule.delay(loop.time())
            logger.info(f"[orchestrator] Waiting {delay:.1f}s for next tick")
            await self._wait_for_tick(delay)
            schedule.advance(loop.time())

        logger.info("[orchestrator] Scheduler stopped")

    async def start(self):
        """Start the scheduler"""
        if self.config.disable_scheduler:
            logger.info("[orchestrator] Scheduler disabled by SCRAPER_DISABLE_SCHEDULER")
            return
        if self.running:
            return

        self._task = asyncio.create_task(self.scheduler_loop())
        logger.info("[orchestrator] Scheduler task created")

    async def stop(self):
        """Stop the scheduler, cancelling the running cycle cooperatively"""
        logger.info("[orchestrator] Scheduler stopping...")
        self._shutdown.trip("shutdown")
        if self._task is None:
            return

        # In-flight items get the grace period; pending forwards get one request timeout
        timeout = self.config.grace_period + self.config.http_timeout + 1.0
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            logger.warning(f"[orchestrator] Scheduler did not stop within {timeout:.1f}s; cancelling")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    def status(self) -> Dict:
        return {
            "running": self.running,
            "current_cycle": self.current.to_dict() if self.current else None,
            "cycles_run": self._cycle_count,
            "config": self.config.summary(),
            "recent_cycles": [report.to_dict() for report in reversed(self.history)],
        }


def build_orchestrator(config: ScraperConfig) -> CycleCoordinator:
    """Wire the backend-facing collaborators into a coordinator"""
    http_client = HTTPClient(user_agent=config.user_agent, timeout=config.http_timeout)
    return CycleCoordinator(
        config,
        job_source=BackendJobSource(config.backend_api, http_client),
        processor=ProductPageProcessor(
            http_client,
            timeout=config.http_timeout,
            retries=config.item_fetch_retries,
        ),
        sink=BackendResultSink(
            config.backend_api,
            http_client,
            timeout=config.http_timeout,
            forward_failed=config.forward_failed_results,
        ),
    )


# Global instance
_orchestrator: Optional[CycleCoordinator] = None


def get_orchestrator(config: Optional[ScraperConfig] = None) -> Optional[CycleCoordinator]:
    """Get or create the orchestrator instance"""
    global _orchestrator
    if _orchestrator is None and config is not None:
        _orchestrator = build_orchestrator(config)
    return _orchestrator


async def start_scheduler(config: ScraperConfig) -> CycleCoordinator:
    """Start the scrape scheduler (call from FastAPI startup)"""
    orchestrator = get_orchestrator(config)
    await orchestrator.start()
    return orchestrator


async def stop_scheduler():
    """Stop the scrape scheduler (call from FastAPI shutdown)"""
    global _orchestrator
    if _orchestrator:
        await _orchestrator.stop()
        _orchestrator = None
