"""Lightweight correlation ID utilities for diagnostic events.

Provides a per-pass correlation identifier via a ContextVar so that probe
tasks spawned during one triage or full run tag their events with the same
``run_id``. Child tasks inherit the context at creation, so no global state
is needed.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_run_id_var: ContextVar[str] = ContextVar("run_id", default="")


def get_run_id() -> str:
    """Return the current run correlation id, or empty string."""

    return _run_id_var.get()


@contextmanager
def run_scope(run_id: Optional[str] = None) -> Iterator[str]:
    """Install ``run_id`` (or a fresh one) for the duration of the block."""

    rid = run_id or uuid.uuid4().hex[:12]
    token = _run_id_var.set(rid)
    try:
        yield rid
    finally:
        _run_id_var.reset(token)
