"""Outcome variants and transient-failure classification.

Operations wrapped by :class:`~endpoint_diagnostics.collector.retry.RetryableCollector`
may report their outcome explicitly through :class:`Success`,
:class:`TransientFailure` or :class:`FatalFailure` instead of raising. A
raised exception is still accepted and classified with a predicate;
:func:`is_transient_error` is the default one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

import httpx

T = TypeVar("T")


class ProbeError(Exception):
    """Failure reported by a probe in its own words."""


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class TransientFailure:
    """Failure worth retrying (timeouts, dropped connections)."""

    error: BaseException
    message: Optional[str] = None

    def describe(self) -> str:
        return self.message or str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class FatalFailure:
    """Failure that must not be retried (bad credentials, invalid input)."""

    error: BaseException
    message: Optional[str] = None

    def describe(self) -> str:
        return self.message or str(self.error) or type(self.error).__name__


Outcome = Union[Success[Any], TransientFailure, FatalFailure]

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def is_transient_error(exc: BaseException) -> bool:
    """Default classifier: network-level and server-side failures are transient.

    Parameters
    ----------
    exc: BaseException
        Exception raised by the wrapped operation.

    Returns
    -------
    bool
        True for timeouts, connection failures and HTTP 408/425/429/5xx
        responses; False for everything else.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status in _TRANSIENT_STATUS or status >= 500
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    return False
