"""Parallel probe execution and diagnosis.

:class:`ProbeOrchestrator` runs every probe of a pass concurrently, each in
its own task, each wrapped by :class:`RetryableCollector` and each holding a
child of the caller's cancellation token. One slow or failing probe never
blocks the others. The pass has an overall deadline: probes still running
when it expires are abandoned and reported as timed out, while results that
already arrived are kept. Caller cancellation works the same way and the pass
returns the partial results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Set, Tuple

from ..collector.errors import is_transient_error
from ..collector.retry import RetryableCollector
from ..config.models import TriageConfig
from ..events.models import DiagnosticEvent, EventType
from ..events.pipeline import EventPipeline
from ..utils.cancellation import CancellationToken, ensure_token
from ..utils.correlation import get_run_id, run_scope
from .models import Diagnosis, Probe, ProbeRole, TestResult, TriageResult
from .rules import diagnose, index_by_role

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_probe_set(probes: Sequence[Probe]) -> None:
    """Reject probe sets that cannot start a pass.

    Raises
    ------
    ValueError
        If the set is empty or two probes share a name.
    """
    if not probes:
        raise ValueError("probe set must not be empty")
    seen: Set[str] = set()
    for probe in probes:
        if not probe.name:
            raise ValueError("probe name must not be empty")
        if probe.name in seen:
            raise ValueError(f"duplicate probe name: {probe.name}")
        seen.add(probe.name)


def _consume_abandoned(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug(
            "triage.abandoned_probe_error",
            extra={"task": task.get_name(), "error": str(task.exception())},
        )


class ProbeOrchestrator:
    """Run probe sets concurrently and reduce them to a ranked diagnosis.

    Parameters
    ----------
    config: Optional[TriageConfig]
        Deadline, thresholds and default retry policy.
    pipeline: Optional[EventPipeline]
        Destination for probe and triage events.
    """

    def __init__(
        self,
        config: Optional[TriageConfig] = None,
        pipeline: Optional[EventPipeline] = None,
    ) -> None:
        self.config = config or TriageConfig()
        self._pipeline = pipeline
        self._collector = RetryableCollector(pipeline, source="triage")

    def _emit(self, event: DiagnosticEvent) -> None:
        if self._pipeline is not None:
            self._pipeline.enqueue(event)

    async def run_triage(
        self,
        endpoint: Any,
        probes: Sequence[Probe],
        cancellation: Optional[CancellationToken] = None,
    ) -> TriageResult:
        """Run one triage pass.

        Returns
        -------
        TriageResult
            Always returned once the pass has started, including on deadline
            expiry, cancellation, and orchestration errors (diagnosis
            ``Error``).

        Raises
        ------
        ValueError
            If the probe set is empty or contains duplicate names.
        """
        validate_probe_set(probes)
        token = ensure_token(cancellation)

        with run_scope(get_run_id() or None) as run_id:
            started_at = _utcnow()
            t0 = time.perf_counter()
            slots: Dict[str, TestResult] = {}
            logger.info(
                "triage.started",
                extra={"run_id": run_id, "probes": [p.name for p in probes]},
            )
            try:
                await self._run_probes(endpoint, probes, token, slots)
                ordered = [slots[p.name] for p in probes if p.name in slots]
                diagnosis = diagnose(index_by_role(probes, ordered), ordered, self.config)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error(
                    "triage.orchestration_error",
                    extra={"run_id": run_id, "error": str(exc)},
                    exc_info=True,
                )
                ordered = [slots[p.name] for p in probes if p.name in slots]
                diagnosis = Diagnosis.error(str(exc) or type(exc).__name__)

            duration_ms = (time.perf_counter() - t0) * 1000.0
            result = TriageResult(
                results=tuple(ordered),
                diagnosis=diagnosis,
                duration_ms=duration_ms,
                started_at=started_at,
                completed_at=max(_utcnow(), started_at),
                run_id=run_id,
            )
            logger.info(
                "triage.completed",
                extra={
                    "run_id": run_id,
                    "category": diagnosis.category.value,
                    "confidence": diagnosis.confidence,
                    "duration_ms": round(duration_ms, 1),
                },
            )
            self._emit(
                DiagnosticEvent.info(
                    EventType.TRIAGE,
                    f"Triage complete: {diagnosis.category.value}",
                    source="triage",
                    data={
                        "category": diagnosis.category.value,
                        "confidence": diagnosis.confidence,
                        "summary": diagnosis.summary,
                        "failed_probes": [r.name for r in result.failed],
                        "duration_ms": duration_ms,
                    },
                )
            )
            return result

    async def _run_probes(
        self,
        endpoint: Any,
        probes: Sequence[Probe],
        token: CancellationToken,
        slots: Dict[str, TestResult],
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.total_timeout_seconds
        tasks: Dict["asyncio.Task[TestResult]", Tuple[Probe, CancellationToken]] = {}
        started: Dict[str, datetime] = {}
        for probe in probes:
            child = token.child()
            started[probe.name] = _utcnow()
            task = asyncio.create_task(
                self.run_probe(endpoint, probe, child), name=f"probe:{probe.name}"
            )
            tasks[task] = (probe, child)

        cancel_waiter = asyncio.create_task(token.wait(), name="triage:cancel-waiter")
        pending: Set["asyncio.Task[TestResult]"] = set(tasks)
        try:
            while pending and not token.is_cancelled:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    probe, _ = tasks[task]
                    slots[probe.name] = task.result()
        except BaseException:
            for task in pending:
                tasks[task][1].cancel("triage aborted")
                task.cancel()
                task.add_done_callback(_consume_abandoned)
            raise
        finally:
            cancel_waiter.cancel()
            for _, child in tasks.values():
                child.detach()

        if not pending:
            return
        reason = "cancelled" if token.is_cancelled else "timed out"
        now = _utcnow()
        for task in pending:
            probe, child = tasks[task]
            if task.done() and not task.cancelled() and task.exception() is None:
                slots[probe.name] = task.result()
                continue
            child.cancel(f"probe {reason}")
            task.cancel()
            task.add_done_callback(_consume_abandoned)
            began = started[probe.name]
            slots[probe.name] = TestResult.failed(
                probe.name,
                f"Probe {reason} before completing"
                + (
                    f" (deadline {self.config.total_timeout_seconds:g}s)."
                    if reason == "timed out"
                    else "."
                ),
                duration_ms=max((now - began).total_seconds() * 1000.0, 0.0),
                started_at=began,
                ended_at=max(now, began),
                issues=(f"Probe {reason}.",),
            )
            logger.warning(
                "triage.probe_abandoned",
                extra={"probe": probe.name, "reason": reason},
            )
            self._emit(
                DiagnosticEvent.warning(
                    EventType.PROBE,
                    f"{probe.name} probe {reason}",
                    source=f"probe.{probe.name}",
                    data={"probe": probe.name, "reason": reason},
                )
            )

    async def run_probe(
        self, endpoint: Any, probe: Probe, token: CancellationToken
    ) -> TestResult:
        """Run one probe through the retry collector and stamp its result."""
        policy = probe.retry or self.config.retry
        started_at = _utcnow()
        t0 = time.perf_counter()

        async def attempt(tok: CancellationToken) -> Any:
            return await probe.func(endpoint, tok)

        outcome = await self._collector.execute(
            attempt,
            max_attempts=policy.max_attempts,
            base_delay=policy.base_delay_seconds,
            cancellation=token,
            is_transient=probe.is_transient or is_transient_error,
            max_delay=policy.max_delay_seconds,
            name=probe.name,
        )
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        ended_at = max(_utcnow(), started_at)

        if outcome.succeeded and isinstance(outcome.value, TestResult):
            value: TestResult = outcome.value
            result = value.model_copy(
                update={
                    "name": probe.name,
                    "started_at": started_at,
                    "ended_at": ended_at,
                    "duration_ms": (
                        value.duration_ms if value.duration_ms is not None else elapsed_ms
                    ),
                }
            )
        elif outcome.succeeded:
            result = TestResult.failed(
                probe.name,
                f"Probe returned {type(outcome.value).__name__}, expected TestResult.",
                duration_ms=elapsed_ms,
                started_at=started_at,
                ended_at=ended_at,
                issues=("Probe returned an unexpected value.",),
            )
        else:
            verdict = {
                "fatal": "failed",
                "exhausted": f"failed after {outcome.attempts} attempts",
                "cancelled": "cancelled",
            }[outcome.status.value]
            result = TestResult.failed(
                probe.name,
                outcome.message or f"Probe {verdict}.",
                duration_ms=elapsed_ms,
                started_at=started_at,
                ended_at=ended_at,
                issues=(f"Probe {verdict}: {outcome.message}",),
            )

        self._report(probe, result)
        return result

    def _report(self, probe: Probe, result: TestResult) -> None:
        data = {
            "probe": probe.name,
            "role": probe.role.value,
            "success": result.success,
            "duration_ms": result.duration_ms,
            "issues": list(result.issues),
            "metrics": dict(result.metrics),
        }
        if result.success:
            self._emit(
                DiagnosticEvent.info(
                    EventType.PROBE,
                    f"{probe.name} probe succeeded: {result.details}",
                    source=f"probe.{probe.name}",
                    data=data,
                )
            )
        else:
            self._emit(
                DiagnosticEvent.error(
                    EventType.PROBE,
                    f"{probe.name} probe failed: {result.details}",
                    source=f"probe.{probe.name}",
                    data=data,
                )
            )
        slow = self._slow_threshold(probe.role)
        if slow is not None and (result.duration_ms or 0.0) > slow:
            self._emit(
                DiagnosticEvent.warning(
                    EventType.PROBE,
                    f"{probe.name} probe was slow: {result.duration_ms:.0f} ms.",
                    source=f"probe.{probe.name}",
                    data=data,
                )
            )

    def _slow_threshold(self, role: ProbeRole) -> Optional[float]:
        if role is ProbeRole.CONNECTION:
            return self.config.slow_connection_threshold_ms
        if role is ProbeRole.OPERATION:
            return self.config.slow_operation_threshold_ms
        return None

