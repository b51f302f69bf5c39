"""Continuous monitoring: periodic full diagnostic runs in the background."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from ..events.models import DiagnosticEvent, EventType
from ..events.pipeline import EventPipeline
from ..reports.models import DiagnosticReport
from ..reports.runner import DiagnosticsRunner
from ..utils.cancellation import CancellationToken, OperationCancelledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticSnapshot:
    timestamp: datetime
    report: DiagnosticReport


SnapshotHandler = Callable[[DiagnosticSnapshot], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[BaseException], Union[None, Awaitable[None]]]


async def _call(handler: Callable[[Any], Any], arg: Any) -> None:
    result = handler(arg)
    if inspect.isawaitable(result):
        await result


class DiagnosticMonitor:
    """Run full diagnostics every ``interval`` seconds until stopped.

    Errors from a run or from the snapshot handler are logged, forwarded to
    ``on_error`` and the loop continues. Cancelling the token passed to
    :meth:`start`, or calling :meth:`stop`, ends the loop.
    """

    def __init__(
        self, runner: DiagnosticsRunner, pipeline: Optional[EventPipeline] = None
    ) -> None:
        self.runner = runner
        self._pipeline = pipeline
        self._task: Optional[asyncio.Task[None]] = None
        self._token: Optional[CancellationToken] = None
        self.snapshots_taken = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self,
        endpoint: Any,
        interval: float,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        """Start the background loop.

        Raises
        ------
        ValueError
            If ``interval`` is not positive or ``endpoint`` is None.
        RuntimeError
            If the monitor is already running.
        """
        if endpoint is None:
            raise ValueError("endpoint must be provided")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if self.is_running:
            raise RuntimeError("Monitor is already running")
        self._token = cancellation.child() if cancellation is not None else CancellationToken()
        self._task = asyncio.create_task(
            self._loop(endpoint, interval, on_snapshot, on_error, self._token),
            name="diagnostic-monitor",
        )
        logger.info("monitor.started", extra={"interval": interval})

    async def stop(self) -> None:
        """Signal the loop to finish and wait for it."""
        task, token = self._task, self._token
        self._task = self._token = None
        if token is not None:
            token.cancel("monitor stopped")
            token.detach()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
            logger.info("monitor.stopped", extra={"snapshots": self.snapshots_taken})

    async def __aenter__(self) -> "DiagnosticMonitor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _loop(
        self,
        endpoint: Any,
        interval: float,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler],
        token: CancellationToken,
    ) -> None:
        while not token.is_cancelled:
            try:
                report = await self.runner.run_full(endpoint, token)
                token.raise_if_cancelled()
                self.snapshots_taken += 1
                await _call(on_snapshot, DiagnosticSnapshot(datetime.now(timezone.utc), report))
            except OperationCancelledError:
                break
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error("monitor.run_failed", extra={"error": str(exc)}, exc_info=True)
                if self._pipeline is not None:
                    self._pipeline.enqueue(
                        DiagnosticEvent.error(
                            EventType.MONITOR,
                            f"Diagnostic monitor encountered an error: {exc}",
                            source="monitor",
                        )
                    )
                if on_error is not None:
                    try:
                        await _call(on_error, exc)
                    except Exception as handler_exc:  # pylint: disable=broad-exception-caught
                        logger.warning(
                            "monitor.error_handler_failed", extra={"error": str(handler_exc)}
                        )
            try:
                await token.sleep(interval)
            except OperationCancelledError:
                break
