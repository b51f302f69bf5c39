"""Retry-aware execution of a single asynchronous operation.

:class:`RetryableCollector` wraps every probe invocation. Only failures the
classifier deems transient are retried; anything else ends the run on first
occurrence. The delay before attempt *k* (k >= 2) is ``base_delay * 2**(k-2)``,
optionally capped. Cancellation is observed before every attempt and during
each back-off sleep and is reported as ``CANCELLED``, never as exhaustion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..events.models import DiagnosticEvent, EventType
from ..events.pipeline import EventPipeline
from ..utils.cancellation import (
    CancellationToken,
    OperationCancelledError,
    ensure_token,
)
from .errors import FatalFailure, Success, TransientFailure, is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[CancellationToken], Awaitable[Any]]
TransientPredicate = Callable[[BaseException], bool]


class CollectorStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FATAL = "fatal"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CollectorResult(Generic[T]):
    """Outcome of :meth:`RetryableCollector.execute`.

    Attributes
    ----------
    status: CollectorStatus
        How the run ended.
    value: Optional[T]
        Operation result when ``status`` is ``SUCCEEDED``.
    error: Optional[BaseException]
        Last observed failure otherwise (the cancellation error when
        cancelled).
    attempts: int
        Number of attempts actually started.
    """

    status: CollectorStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is CollectorStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status is CollectorStatus.CANCELLED

    @property
    def message(self) -> str:
        if self.error is None:
            return ""
        return str(self.error) or type(self.error).__name__


def backoff_delay(attempt: int, base_delay: float, max_delay: Optional[float] = None) -> float:
    """Delay to wait before ``attempt`` (1-based); zero for the first attempt."""
    if attempt < 2:
        return 0.0
    delay = base_delay * (2 ** (attempt - 2))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


class RetryableCollector:
    """Generic retry/back-off wrapper emitting one event per attempt outcome.

    Parameters
    ----------
    pipeline: Optional[EventPipeline]
        Destination for diagnostic events; events are skipped when None.
    source: str
        Source tag stamped on emitted events.
    """

    def __init__(
        self, pipeline: Optional[EventPipeline] = None, *, source: str = "collector"
    ) -> None:
        self._pipeline = pipeline
        self._source = source

    def _emit(self, event: DiagnosticEvent) -> None:
        if self._pipeline is not None:
            self._pipeline.enqueue(event)

    async def execute(  # pylint: disable=too-many-arguments
        self,
        operation: Operation,
        max_attempts: int = 3,
        base_delay: float = 0.15,
        cancellation: Optional[CancellationToken] = None,
        *,
        is_transient: Optional[TransientPredicate] = None,
        max_delay: Optional[float] = None,
        name: str = "operation",
    ) -> CollectorResult[Any]:
        """Run ``operation`` until it succeeds, fails fatally, or attempts run out.

        The operation receives the cancellation token. It may return a plain
        value (success), one of :class:`Success`, :class:`TransientFailure`
        or :class:`FatalFailure`, or raise; raised exceptions are classified
        with ``is_transient`` (default :func:`is_transient_error`).

        Raises
        ------
        ValueError
            If ``operation`` is None, ``max_attempts < 1``, or a delay is
            negative.
        """
        if operation is None:
            raise ValueError("operation must be provided")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if max_delay is not None and max_delay < 0:
            raise ValueError("max_delay must be >= 0")

        token = ensure_token(cancellation)
        classify = is_transient or is_transient_error
        last_error: Optional[BaseException] = None
        attempt = 0

        while attempt < max_attempts:
            attempt += 1
            try:
                await token.sleep(backoff_delay(attempt, base_delay, max_delay))
                token.raise_if_cancelled()
            except OperationCancelledError as exc:
                return self._cancelled(name, exc, attempt - 1)

            transient: bool
            try:
                outcome = await operation(token)
            except OperationCancelledError as exc:
                return self._cancelled(name, exc, attempt)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                last_error = exc
                transient = bool(classify(exc))
            else:
                if isinstance(outcome, TransientFailure):
                    last_error, transient = outcome.error, True
                elif isinstance(outcome, FatalFailure):
                    last_error, transient = outcome.error, False
                else:
                    value = outcome.value if isinstance(outcome, Success) else outcome
                    self._emit(
                        DiagnosticEvent.info(
                            EventType.COLLECTOR,
                            f"{name} succeeded on attempt {attempt}",
                            source=self._source,
                            data={"operation": name, "attempt": attempt},
                        )
                    )
                    return CollectorResult(CollectorStatus.SUCCEEDED, value=value, attempts=attempt)

            if not transient:
                logger.info(
                    "retry.fatal_failure",
                    extra={"operation": name, "attempt": attempt, "error": str(last_error)},
                )
                self._emit(
                    DiagnosticEvent.error(
                        EventType.COLLECTOR,
                        f"{name} failed with a non-transient error: {_describe(last_error)}",
                        source=self._source,
                        data={"operation": name, "attempt": attempt, "transient": False},
                    )
                )
                return CollectorResult(CollectorStatus.FATAL, error=last_error, attempts=attempt)

            if attempt < max_attempts:
                next_delay = backoff_delay(attempt + 1, base_delay, max_delay)
                logger.debug(
                    "retry.attempt_failed",
                    extra={"operation": name, "attempt": attempt, "next_delay": next_delay},
                )
                self._emit(
                    DiagnosticEvent.warning(
                        EventType.COLLECTOR,
                        f"{name} attempt {attempt}/{max_attempts} failed, retrying: "
                        f"{_describe(last_error)}",
                        source=self._source,
                        data={
                            "operation": name,
                            "attempt": attempt,
                            "next_delay_seconds": next_delay,
                        },
                    )
                )

        logger.warning(
            "retry.exhausted",
            extra={"operation": name, "attempts": attempt, "error": str(last_error)},
        )
        self._emit(
            DiagnosticEvent.error(
                EventType.COLLECTOR,
                f"{name} failed after {attempt} attempts: {_describe(last_error)}",
                source=self._source,
                data={"operation": name, "attempts": attempt, "transient": True},
            )
        )
        return CollectorResult(CollectorStatus.EXHAUSTED, error=last_error, attempts=attempt)

    def _cancelled(
        self, name: str, exc: OperationCancelledError, attempts: int
    ) -> CollectorResult[Any]:
        logger.info("retry.cancelled", extra={"operation": name, "attempts": attempts})
        self._emit(
            DiagnosticEvent.warning(
                EventType.COLLECTOR,
                f"{name} cancelled: {exc.reason}",
                source=self._source,
                data={"operation": name, "attempts": attempts},
            )
        )
        return CollectorResult(CollectorStatus.CANCELLED, error=exc, attempts=attempts)


def _describe(error: Optional[BaseException]) -> str:
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__
