"""Non-blocking event pipeline.

Producers call :meth:`EventPipeline.enqueue`, which never blocks: events land
in a bounded buffer that evicts the oldest entry when full. One background
worker per pipeline drains the buffer every ``flush_interval`` seconds, or as
soon as ``batch_size`` events are waiting, and hands each batch to every sink
in registration order. A failing sink is logged and skipped; the remaining
sinks still receive the batch.

The pipeline is constructed explicitly and passed to the components that
emit events. Whoever constructs it owns its lifecycle::

    async with EventPipeline(sinks) as pipeline:
        collector = RetryableCollector(pipeline)
        ...
    # remaining events were flushed on exit
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Iterable, List, Optional, Sequence

from ..config.models import PipelineConfig
from ..utils.cancellation import CancellationToken
from .models import DiagnosticEvent
from .package import create_diagnostic_package
from .sinks import EventSink, build_default_sinks

logger = logging.getLogger(__name__)


class EventPipeline:  # pylint: disable=too-many-instance-attributes
    """Bounded, drop-oldest producer/consumer queue fanning out to sinks.

    Parameters
    ----------
    sinks: Iterable[EventSink]
        Destinations, called in the given order for every batch.
    capacity: int
        Maximum number of queued events.
    flush_interval: float
        Seconds the worker idles between flush cycles.
    batch_size: int
        Queue length that wakes the worker early; also the maximum batch.
    error_backoff: float
        Seconds the worker pauses after an unexpected error.
    """

    def __init__(
        self,
        sinks: Iterable[EventSink] = (),
        *,
        capacity: int = 8192,
        flush_interval: float = 1.0,
        batch_size: int = 256,
        error_backoff: float = 2.0,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if error_backoff < 0:
            raise ValueError("error_backoff must be >= 0")
        self._sinks: List[EventSink] = list(sinks)
        self._capacity = capacity
        self._flush_interval = flush_interval
        self._batch_size = batch_size
        self._error_backoff = error_backoff

        self._queue: Deque[DiagnosticEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._dropped = 0
        self._sink_failures = 0
        self._delivered = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._stopping = False
        self._token = CancellationToken()
        self._flush_lock: Optional[asyncio.Lock] = None

    @classmethod
    def from_config(
        cls, config: PipelineConfig, extra_sinks: Iterable[EventSink] = ()
    ) -> "EventPipeline":
        """Build a pipeline with the built-in sinks plus ``extra_sinks``."""
        sinks = build_default_sinks(config) + list(extra_sinks)
        return cls(
            sinks,
            capacity=config.capacity,
            flush_interval=config.flush_interval_seconds,
            batch_size=config.batch_size,
            error_backoff=config.error_backoff_seconds,
        )

    # ------------------------------------------------------------------ state
    @property
    def sinks(self) -> Sequence[EventSink]:
        return tuple(self._sinks)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped_count(self) -> int:
        """Events evicted at ingress because the buffer was full."""
        return self._dropped

    @property
    def sink_failure_count(self) -> int:
        return self._sink_failures

    @property
    def delivered_count(self) -> int:
        """Events handed to the sinks (counted once per batch, not per sink)."""
        return self._delivered

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def pending(self) -> List[DiagnosticEvent]:
        """Snapshot of queued events, oldest first."""
        with self._lock:
            return list(self._queue)

    # --------------------------------------------------------------- producer
    def enqueue(self, event: DiagnosticEvent) -> None:
        """Queue ``event`` for delivery without blocking.

        Safe to call from any thread. When the buffer is full the oldest
        queued event is evicted and counted in :attr:`dropped_count`.
        """
        if event is None:
            raise ValueError("event must not be None")
        with self._lock:
            if len(self._queue) == self._capacity:
                self._dropped += 1
            self._queue.append(event)
            size = len(self._queue)
        if size >= self._batch_size:
            self._signal()

    def _signal(self) -> None:
        wakeup, loop = self._wakeup, self._loop
        if wakeup is None or loop is None:
            return
        if threading.get_ident() == self._loop_thread:
            wakeup.set()
            return
        try:
            loop.call_soon_threadsafe(wakeup.set)
        except RuntimeError:
            # loop already closed; the events stay queued for a later flush
            logger.debug("pipeline.signal_skipped", extra={"reason": "loop closed"})

    # ---------------------------------------------------------------- worker
    async def start(self) -> None:
        """Start the background worker (idempotent)."""
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._wakeup = asyncio.Event()
        self._flush_lock = asyncio.Lock()
        self._stopping = False
        self._token = CancellationToken()
        self._worker = asyncio.create_task(self._run(), name="event-pipeline-worker")
        logger.info(
            "pipeline.started",
            extra={
                "sinks": [s.name for s in self._sinks],
                "capacity": self._capacity,
                "batch_size": self._batch_size,
            },
        )

    async def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the worker after one final flush, then close the sinks.

        Parameters
        ----------
        timeout: Optional[float]
            Upper bound for the final flush. On expiry the sinks' token is
            cancelled and the worker task is cancelled.
        """
        worker = self._worker
        if worker is not None and not worker.done():
            self._stopping = True
            if self._wakeup is not None:
                self._wakeup.set()
            done, _ = await asyncio.wait({worker}, timeout=timeout)
            if not done:
                logger.warning("pipeline.stop_timeout", extra={"timeout": timeout})
                self._token.cancel("pipeline stop timed out")
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)
        elif self._queue:
            await self.flush()
        self._worker = None
        self._close_sinks()
        logger.info(
            "pipeline.stopped",
            extra={
                "delivered": self._delivered,
                "dropped": self._dropped,
                "sink_failures": self._sink_failures,
            },
        )

    async def __aenter__(self) -> "EventPipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _run(self) -> None:
        assert self._wakeup is not None
        while not self._stopping:
            try:
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(), timeout=self._flush_interval
                    )
                except asyncio.TimeoutError:
                    pass
                self._wakeup.clear()
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error(
                    "pipeline.worker_error",
                    extra={"error": str(exc), "backoff_seconds": self._error_backoff},
                    exc_info=True,
                )
                await asyncio.sleep(self._error_backoff)
        await self.flush()

    def _take_batch(self) -> List[DiagnosticEvent]:
        with self._lock:
            count = min(len(self._queue), self._batch_size)
            return [self._queue.popleft() for _ in range(count)]

    async def flush(self) -> int:
        """Drain the queue now, delivering in batches of at most ``batch_size``.

        Returns
        -------
        int
            Number of events taken from the queue.
        """
        lock = self._flush_lock
        if lock is None:
            lock = self._flush_lock = asyncio.Lock()
        total = 0
        async with lock:
            while True:
                batch = self._take_batch()
                if not batch:
                    break
                await self._deliver(batch)
                total += len(batch)
        return total

    async def _deliver(self, batch: List[DiagnosticEvent]) -> None:
        for sink in self._sinks:
            try:
                await sink.flush(batch, self._token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._sink_failures += 1
                logger.warning(
                    "pipeline.sink_failed",
                    extra={
                        "sink": getattr(sink, "name", type(sink).__name__),
                        "batch_size": len(batch),
                        "error": str(exc) or type(exc).__name__,
                    },
                )
        self._delivered += len(batch)

    def _close_sinks(self) -> None:
        for sink in self._sinks:
            close = getattr(sink, "close", None)
            if not callable(close):
                continue
            try:
                close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.warning(
                    "pipeline.sink_close_failed",
                    extra={"sink": getattr(sink, "name", "?"), "error": str(exc)},
                )

    # --------------------------------------------------------------- package
    def artifact_directory(self) -> Optional[Path]:
        """Directory of the first sink exposing an artifact path."""
        for sink in self._sinks:
            path = sink.artifact_path
            if path is not None:
                return Path(path).parent
        return None

    async def create_diagnostic_package(
        self,
        since: Optional[datetime] = None,
        output_path: Optional[Path] = None,
    ) -> Path:
        """Flush, then archive the sinks' log directory.

        Raises
        ------
        ValueError
            If no sink writes artifacts, or nothing falls in the window.
        FileNotFoundError
            If the artifact directory no longer exists.
        """
        directory = self.artifact_directory()
        if directory is None:
            raise ValueError("No sink exposes an artifact path")
        await self.flush()
        return await create_diagnostic_package(
            directory, since=since, output_path=output_path, cancellation=self._token
        )
