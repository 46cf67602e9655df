"""
Tests for ScanSession.
"""

import pytest

from exceptions import ValidationError
from scan_session import ScanSession


def test_login_sets_identity_and_resets_state():
    session = ScanSession(device_id="DOCK-1")
    session.codes.add("stale")
    session.scanned = 4

    session.login("op-7", store_id=3, store_name="Norte")

    assert session.is_active
    assert session.operator_id == "op-7"
    assert session.store_id == 3
    assert session.session_id
    assert session.codes == set()
    assert session.scanned == 0


def test_login_requires_operator():
    with pytest.raises(ValidationError):
        ScanSession().login("  ")


def test_rehydrate_and_remember():
    session = ScanSession()
    session.login("op")

    assert session.rehydrate(["a", "b", None, ""]) == 2
    session.remember("c")

    assert session.has_code("a")
    assert session.has_code("c")
    assert not session.has_code("d")


def test_logout_clears_cache_and_returns_summary():
    session = ScanSession(device_id="DOCK-1")
    session.login("op")
    session.remember("a")
    session.scanned = 1
    session.repeated = 2
    session.queued = 3

    summary = session.logout()

    assert summary["scanned"] == 1
    assert summary["repeated"] == 2
    assert summary["queued"] == 3
    assert summary["cached_codes"] == 1
    assert not session.is_active
    assert session.codes == set()
