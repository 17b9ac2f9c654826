"""
Retry scheduler for unresolved tracked events.

Process:
1. start() runs one sweep immediately, then one every `interval_seconds`
2. A sweep loads up to `batch_size` pending/failed events, oldest first
3. Each event is delivered and its outcome written back, one at a time
4. Events that fail again stay `failed` and are picked up by the next sweep

Guarantees:
- Only one timer per scheduler: start() while running is a logged no-op.
- Only one sweep at a time: a tick that lands while a sweep is running is
  skipped, not queued. The flag is cleared in `finally`.
- stop() only prevents future ticks; in-flight sweeps and deliveries finish.
- A store query/update error aborts the current sweep; the next tick recovers.

The scheduler also owns the bounded submission queue that request handlers
use instead of fire-and-forget calls: submit() enqueues a TrackRequest and a
consumer task feeds it to EventRecorder.track().

Retries are unbounded (no max attempts, no backoff).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Coroutine, Mapping, Optional, Union

from domain.attribution import AttributionContext
from domain.errors import StoreError
from domain.event import EventData, EventName, EventStatus
from services.delivery_pipeline import DeliveryPipeline
from services.event_recorder import EventRecorder
from services.settings import DEFAULT_RETRY_BATCH_SIZE, DEFAULT_RETRY_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE: int = 1000


@dataclass(frozen=True, slots=True)
class TrackRequest:
    """A tracking call queued by a request handler."""

    event_name: EventName
    event_data: Union[EventData, Mapping[str, Any], None] = None
    attribution: Optional[AttributionContext] = None
    value: Optional[Decimal] = None
    currency: Optional[str] = None
    event_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SweepResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False
    aborted: bool = False
    event_ids: tuple[str, ...] = field(default_factory=tuple)


class SchedulerHandle:
    """Cancellable handle returned by RetryScheduler.start()."""

    def __init__(self, scheduler: "RetryScheduler"):
        self._scheduler = scheduler

    @property
    def running(self) -> bool:
        return self._scheduler.current_handle is self and self._scheduler.is_running

    def cancel(self) -> None:
        if self.running:
            self._scheduler.stop()


class RetryScheduler:
    """
    Periodic sweeper for `pending` / `failed` events.

    Construct one per process and inject it; there is no global instance.
    """

    def __init__(
        self,
        repository,
        pipeline: DeliveryPipeline,
        recorder: Optional[EventRecorder] = None,
        *,
        interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_RETRY_BATCH_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._repository = repository
        self._pipeline = pipeline
        self._recorder = recorder
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._queue: asyncio.Queue[TrackRequest] = asyncio.Queue(maxsize=queue_size)

        self._is_processing = False
        self._timer: Optional[asyncio.Task] = None
        self._consumer: Optional[asyncio.Task] = None
        self._handle: Optional[SchedulerHandle] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def current_handle(self) -> Optional[SchedulerHandle]:
        return self._handle

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def start(self) -> SchedulerHandle:
        """
        Start the sweep loop (and the submission consumer).

        Must be called from within a running event loop.
        """

        if self.is_running and self._handle is not None:
            logger.warning("Retry scheduler is already running")
            return self._handle

        logger.info(
            f"Starting retry scheduler (interval={self._interval}s, batch_size={self._batch_size})"
        )
        self._spawn(self.sweep())
        self._timer = asyncio.create_task(self._run_timer())
        if self._recorder is not None:
            self._consumer = asyncio.create_task(self._consume())
        self._handle = SchedulerHandle(self)
        return self._handle

    def stop(self) -> None:
        """Cancel future ticks. In-flight sweeps and deliveries are not interrupted."""

        if self._timer is None and self._consumer is None:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None
        self._handle = None
        logger.info("Retry scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait for queued submissions and in-flight sweeps/deliveries to finish."""

        if self._consumer is not None and not self._consumer.done():
            await self._queue.join()
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop ticking, drain queued submissions, then stop the consumer."""

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self.wait_idle()
        self.stop()
        await self.wait_idle()

    def submit(self, request: TrackRequest) -> bool:
        """
        Queue a tracking call for the consumer task.

        Returns:
            False if there is no recorder or the queue is full (request dropped).
        """

        if self._recorder is None:
            logger.error(f"Cannot queue {request.event_name} event: scheduler has no recorder")
            return False
        try:
            self._queue.put_nowait(request)
        except asyncio.QueueFull:
            logger.error(
                f"Tracking queue full ({self._queue.maxsize}); dropping {request.event_name} event",
                extra={"event_name": str(request.event_name)},
            )
            return False
        return True

    async def sweep(self) -> SweepResult:
        """
        Run one batch-retry pass.

        Returns:
            SweepResult with per-status counts; skipped=True if another sweep
            was running, aborted=True if the store failed mid-sweep.
        """

        if self._is_processing:
            logger.info("Retry sweep already in progress; skipping this tick")
            return SweepResult(skipped=True)

        self._is_processing = True
        sent = failed = 0
        processed: list[str] = []
        try:
            events = await self._repository.query_unresolved(self._batch_size)
            if not events:
                logger.debug("No pending or failed events to retry")
                return SweepResult()

            logger.info(f"Retrying {len(events)} unresolved events")
            for event in events:
                result = await self._pipeline.deliver(event)
                await self._repository.update_event_status(event.event_id, result.status, result.response)
                processed.append(event.event_id)
                if result.status is EventStatus.SENT:
                    sent += 1
                else:
                    failed += 1

            logger.info(f"Retry sweep finished: {sent} sent, {failed} failed")
            return SweepResult(processed=len(processed), sent=sent, failed=failed, event_ids=tuple(processed))

        except StoreError as e:
            logger.error(f"Retry sweep aborted: {e}", extra={"processed": len(processed)})
            return SweepResult(
                processed=len(processed),
                sent=sent,
                failed=failed,
                aborted=True,
                event_ids=tuple(processed),
            )
        finally:
            self._is_processing = False

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._spawn(self.sweep())

    async def _consume(self) -> None:
        while True:
            request = await self._queue.get()
            task = self._spawn(
                self._recorder.track(
                    request.event_name,
                    request.event_data,
                    attribution=request.attribution,
                    value=request.value,
                    currency=request.currency,
                    event_id=request.event_id,
                )
            )
            try:
                # Shielded so stop() never interrupts a delivery mid-flight.
                await asyncio.shield(task)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Unexpected error tracking {request.event_name} event")
            finally:
                self._queue.task_done()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task


__all__ = [
    "RetryScheduler",
    "SchedulerHandle",
    "SweepResult",
    "TrackRequest",
]
