"""Pluggable baseline storage.

Stores keep every capture; lookups return the most recent capture by
``captured_at`` (last write wins). Records are immutable once written.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import orjson
from cachetools import LRUCache  # type: ignore[import-untyped]
from pydantic import ValidationError

from .models import Baseline

logger = logging.getLogger(__name__)


class BaselineStoreError(Exception):
    """Raised when a baseline cannot be persisted."""


@runtime_checkable
class BaselineStore(Protocol):
    def save(self, baseline: Baseline) -> None:
        ...

    def latest_by_name(self, name: str) -> Optional[Baseline]:
        ...

    def latest_by_fingerprint(self, fingerprint: str) -> Optional[Baseline]:
        ...

    def list(self) -> List[Baseline]:
        ...


def _latest(candidates: List[Baseline]) -> Optional[Baseline]:
    if not candidates:
        return None
    return max(candidates, key=lambda b: b.captured_at)


class InMemoryBaselineStore:
    """Process-local store; captures are lost on exit."""

    def __init__(self) -> None:
        self._records: List[Baseline] = []

    def save(self, baseline: Baseline) -> None:
        self._records.append(baseline)

    def latest_by_name(self, name: str) -> Optional[Baseline]:
        return _latest([b for b in self._records if b.name == name])

    def latest_by_fingerprint(self, fingerprint: str) -> Optional[Baseline]:
        return _latest([b for b in self._records if b.endpoint_fingerprint == fingerprint])

    def list(self) -> List[Baseline]:
        return sorted(self._records, key=lambda b: b.captured_at)


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_name(name: str) -> str:
    """Filesystem-safe form of a baseline name.

    Examples
    --------
    >>> sanitize_name("prod db / eu-west")
    'prod-db-eu-west'
    """
    cleaned = _UNSAFE.sub("-", name.strip()).strip("-.")
    return cleaned or "baseline"


class FileBaselineStore:
    """One JSON document per capture under ``directory``.

    Files are named ``<sanitised-name>-<YYYYmmddHHMMSSffffff>.json``. Parsed
    records are memoised by path and modification time; files that fail to
    parse are skipped with a warning.
    """

    def __init__(self, directory: Path, *, cache_size: int = 256) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._cache: LRUCache[Tuple[str, int], Baseline] = LRUCache(maxsize=cache_size)

    def path_for(self, baseline: Baseline) -> Path:
        stamp = baseline.captured_at.strftime("%Y%m%d%H%M%S%f")
        return self.directory / f"{sanitize_name(baseline.name)}-{stamp}.json"

    def save(self, baseline: Baseline) -> None:
        path = self.path_for(baseline)
        payload = orjson.dumps(baseline.model_dump(mode="json"), option=orjson.OPT_INDENT_2)
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_bytes(payload)
            tmp.replace(path)
        except OSError as exc:
            raise BaselineStoreError(f"Failed to write baseline '{baseline.name}': {exc}") from exc
        logger.info(
            "baseline.store.saved",
            extra={"baseline": baseline.name, "path": str(path)},
        )

    def _load(self, path: Path) -> Optional[Baseline]:
        try:
            mtime = path.stat().st_mtime_ns
        except OSError:
            return None
        key = (str(path), mtime)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            record = Baseline.model_validate(orjson.loads(path.read_bytes()))
        except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "baseline.store.corrupt_file",
                extra={"path": str(path), "error": str(exc)},
            )
            return None
        self._cache[key] = record
        return record

    def list(self) -> List[Baseline]:
        records = [
            rec
            for rec in (self._load(p) for p in sorted(self.directory.glob("*.json")))
            if rec is not None
        ]
        return sorted(records, key=lambda b: b.captured_at)

    def latest_by_name(self, name: str) -> Optional[Baseline]:
        prefix = sanitize_name(name) + "-"
        candidates = [
            rec
            for rec in (
                self._load(p) for p in self.directory.glob("*.json") if p.name.startswith(prefix)
            )
            if rec is not None and rec.name == name
        ]
        return _latest(candidates)

    def latest_by_fingerprint(self, fingerprint: str) -> Optional[Baseline]:
        return _latest([b for b in self.list() if b.endpoint_fingerprint == fingerprint])

