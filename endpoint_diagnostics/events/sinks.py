"""Event sinks.

A sink receives batches of :class:`DiagnosticEvent` from the pipeline worker
through ``flush(batch, cancellation)``. Sinks that write files expose the
file through ``artifact_path`` so that the diagnostic package utility can
locate the log directory without reaching into sink internals.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import orjson
import structlog

from ..config.models import PipelineConfig
from ..utils.cancellation import CancellationToken
from .models import DiagnosticEvent, EventSeverity

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Destination for batches of diagnostic events."""

    name: str

    async def flush(
        self, batch: Sequence[DiagnosticEvent], cancellation: CancellationToken
    ) -> None:
        ...

    @property
    def artifact_path(self) -> Optional[Path]:
        ...


class JsonLinesSink:
    """Append-only newline-delimited JSON file.

    Parameters
    ----------
    path: Path
        Target file; parent directories are created on construction.
    """

    def __init__(self, path: Path, *, name: str = "jsonl") -> None:
        self.name = name
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def artifact_path(self) -> Optional[Path]:
        return self._path

    def _write(self, payload: bytes) -> None:
        with self._path.open("ab") as fh:
            fh.write(payload)

    async def flush(
        self, batch: Sequence[DiagnosticEvent], cancellation: CancellationToken
    ) -> None:
        if not batch:
            return
        cancellation.raise_if_cancelled()
        lines: List[bytes] = []
        for evt in batch:
            try:
                lines.append(orjson.dumps(evt.to_record()) + b"\n")
            except (TypeError, ValueError) as exc:
                # One unencodable record must not cost the rest of the batch
                logger.warning(
                    "events.sink.record_skipped",
                    extra={"sink": self.name, "event_id": str(evt.event_id), "error": str(exc)},
                )
        if lines:
            await asyncio.to_thread(self._write, b"".join(lines))


class RollingFileSink:
    """Size- and count-bounded plain-text log.

    Rotation is delegated to :class:`logging.handlers.RotatingFileHandler`
    attached to a private, non-propagating logger, so events never leak into
    the process log.
    """

    def __init__(
        self,
        path: Path,
        *,
        max_files: int = 5,
        max_file_size_mb: int = 5,
        name: str = "rolling",
    ) -> None:
        if max_files < 1:
            raise ValueError("max_files must be >= 1")
        if max_file_size_mb < 1:
            raise ValueError("max_file_size_mb must be >= 1")
        self.name = name
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = RotatingFileHandler(
            self._path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=max_files,
            encoding="utf-8",
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger = logging.Logger(f"endpoint_diagnostics.sink.{name}")
        self._logger.propagate = False
        self._logger.addHandler(self._handler)

    @property
    def artifact_path(self) -> Optional[Path]:
        return self._path

    def _write(self, lines: List[str]) -> None:
        for line in lines:
            self._logger.info(line)
        self._handler.flush()

    async def flush(
        self, batch: Sequence[DiagnosticEvent], cancellation: CancellationToken
    ) -> None:
        if not batch:
            return
        lines: List[str] = []
        for evt in batch:
            cancellation.raise_if_cancelled()
            lines.append(evt.to_line())
            if evt.data:
                lines.append(
                    "    payload: " + orjson.dumps(evt.data, default=str).decode("utf-8")
                )
        await asyncio.to_thread(self._write, lines)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()


class ConsoleSink:
    """Mirror events to the console through structlog."""

    _LEVELS = {
        EventSeverity.DEBUG: "debug",
        EventSeverity.INFO: "info",
        EventSeverity.WARNING: "warning",
        EventSeverity.ERROR: "error",
        EventSeverity.CRITICAL: "critical",
    }

    def __init__(self, *, name: str = "console") -> None:
        self.name = name
        self._log = structlog.get_logger("endpoint_diagnostics.events")

    @property
    def artifact_path(self) -> Optional[Path]:
        return None

    async def flush(
        self, batch: Sequence[DiagnosticEvent], cancellation: CancellationToken
    ) -> None:
        for evt in batch:
            cancellation.raise_if_cancelled()
            method = getattr(self._log, self._LEVELS[evt.severity])
            method(
                evt.message,
                event_type=evt.event_type.value,
                source=evt.source,
                run_id=evt.run_id or None,
            )


class MemorySink:
    """Keep delivered events in memory; useful for embedding and tests."""

    def __init__(self, *, name: str = "memory") -> None:
        self.name = name
        self.events: List[DiagnosticEvent] = []
        self.batches: int = 0

    @property
    def artifact_path(self) -> Optional[Path]:
        return None

    async def flush(
        self, batch: Sequence[DiagnosticEvent], cancellation: CancellationToken
    ) -> None:
        self.batches += 1
        self.events.extend(batch)


def build_default_sinks(config: PipelineConfig) -> List[EventSink]:
    """Create the built-in sinks described by ``config``.

    With a log directory, a daily JSON-lines file and a rolling text log are
    created there. The console mirror is added when enabled.
    """
    sinks: List[EventSink] = []
    if config.log_directory is not None:
        directory = Path(config.log_directory)
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        sinks.append(JsonLinesSink(directory / f"diagnostics-{day}.jsonl"))
        sinks.append(
            RollingFileSink(
                directory / "diagnostics.log",
                max_files=config.rolling_file_count,
                max_file_size_mb=config.rolling_file_size_mb,
            )
        )
    if config.console_mirror:
        sinks.append(ConsoleSink())
    logger.debug(
        "pipeline.sinks.built",
        extra={"sinks": [s.name for s in sinks], "log_directory": str(config.log_directory)},
    )
    return sinks
