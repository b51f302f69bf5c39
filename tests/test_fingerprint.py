"""Tests for endpoint descriptors and fingerprints."""

import pytest
from pydantic import ValidationError

from endpoint_diagnostics import Endpoint
from endpoint_diagnostics.endpoint import endpoint_fingerprint, endpoint_label


def test_fingerprint_is_stable_sha256():
    a = Endpoint(host="db.internal", port=5432, credentials="s3cret")
    b = Endpoint(host="DB.internal", port=5432, credentials="s3cret")
    fp = endpoint_fingerprint(a)
    assert fp == endpoint_fingerprint(b)
    assert len(fp) == 64
    int(fp, 16)


def test_fingerprint_never_contains_secret():
    endpoint = Endpoint(host="db.internal", port=5432, credentials="s3cret")
    assert "s3cret" not in endpoint_fingerprint(endpoint)
    assert "s3cret" not in repr(endpoint)


def test_credentials_change_fingerprint():
    base = dict(host="db.internal", port=5432)
    assert endpoint_fingerprint(Endpoint(**base, credentials="a")) != endpoint_fingerprint(
        Endpoint(**base, credentials="b")
    )


def test_opaque_descriptors_are_accepted():
    assert endpoint_fingerprint("Server=db;Database=app") == endpoint_fingerprint(
        "Server=db;Database=app"
    )
    assert endpoint_fingerprint({"b": 2, "a": 1}) == endpoint_fingerprint({"a": 1, "b": 2})
    assert endpoint_fingerprint(b"raw") != endpoint_fingerprint(b"other")


@pytest.mark.parametrize("bad", [None, "", "   "])
def test_missing_descriptor_raises(bad):
    with pytest.raises(ValueError):
        endpoint_fingerprint(bad)


def test_port_range_is_validated():
    with pytest.raises(ValidationError):
        Endpoint(host="x", port=0)


def test_labels():
    assert endpoint_label(Endpoint(host="db", port=1433)) == "db:1433"
    assert endpoint_label("Server=db") is None
