"""Endpoint descriptors and their fingerprints.

The engine treats endpoint descriptors as opaque: probes receive them
unchanged and only the fingerprint helper ever looks inside, to derive a
stable, non-reversible key for baseline storage. Credentials are folded into
the hash and never persisted.
"""

from __future__ import annotations

import hashlib
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, SecretStr


class Endpoint(BaseModel):
    """Convenience descriptor for a network service.

    Any object can serve as an endpoint descriptor; this model exists for the
    built-in probes in :mod:`endpoint_diagnostics.triage.probes`.

    Attributes
    ----------
    host: str
        Hostname or IP address.
    port: int
        TCP port of the service.
    url: Optional[str]
        Base URL for HTTP probes (e.g., "https://db-gw.internal:8443").
    credentials: Optional[SecretStr]
        Secret used by probes; masked in reprs and dumps.
    """

    host: str
    port: int = Field(..., ge=1, le=65535)
    url: Optional[str] = None
    credentials: Optional[SecretStr] = None

    @property
    def label(self) -> str:
        """Human-readable target without secrets."""
        return f"{self.host}:{self.port}"


def _canonical_bytes(endpoint: Any) -> bytes:
    if isinstance(endpoint, Endpoint):
        secret = endpoint.credentials.get_secret_value() if endpoint.credentials else ""
        return orjson.dumps(
            {
                "host": endpoint.host.lower(),
                "port": endpoint.port,
                "url": endpoint.url or "",
                "credentials": secret,
            },
            option=orjson.OPT_SORT_KEYS,
        )
    if isinstance(endpoint, BaseModel):
        return orjson.dumps(endpoint.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)
    if isinstance(endpoint, (bytes, bytearray)):
        return bytes(endpoint)
    if isinstance(endpoint, dict):
        return orjson.dumps(endpoint, option=orjson.OPT_SORT_KEYS, default=str)
    return str(endpoint).encode("utf-8")


def endpoint_fingerprint(endpoint: Any) -> str:
    """Return the SHA-256 hex digest identifying ``endpoint``.

    The same descriptor always yields the same fingerprint; the raw value
    (including any credentials) cannot be recovered from it.

    Raises
    ------
    ValueError
        If ``endpoint`` is None or an empty string.
    """
    if endpoint is None or (isinstance(endpoint, str) and not endpoint.strip()):
        raise ValueError("endpoint descriptor must be provided")
    return hashlib.sha256(_canonical_bytes(endpoint)).hexdigest()


def endpoint_label(endpoint: Any) -> Optional[str]:
    """Return a display label for ``endpoint`` if one is safely available."""
    if isinstance(endpoint, Endpoint):
        return endpoint.label
    label = getattr(endpoint, "label", None)
    return label if isinstance(label, str) else None
