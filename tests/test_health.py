"""Tests for the readiness state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from wolfram_mcp.health import (
    STATUS_ERROR,
    STATUS_INITIALIZING,
    STATUS_OK,
    ServerHealth,
)

ALL_CHECKS = ["engineAvailable", "engineWarmedUp", "dispatchConnected", "transportConnected"]


def _ready(health: ServerHealth) -> None:
    health.mark_engine_available()
    health.mark_engine_warmed_up()
    health.mark_dispatch_connected()
    health.mark_transport_connected()


def test_fresh_state_is_initializing():
    health = ServerHealth()
    snap = health.snapshot()
    assert snap.status == STATUS_INITIALIZING
    assert snap.uptime is None
    assert snap.http_status == 503
    body = snap.to_dict()
    assert body["startedAt"] is None
    assert "failedChecks" not in body
    assert list(body["checks"]) == ALL_CHECKS


def test_all_checks_without_error_is_ok():
    health = ServerHealth()
    health.reset()
    _ready(health)
    snap = health.snapshot()
    assert snap.status == STATUS_OK
    assert snap.http_status == 200
    assert snap.failed_checks == []
    assert "failedChecks" not in snap.to_dict()
    assert "error" not in snap.to_dict()


def test_partial_startup_is_error_with_failed_checks():
    health = ServerHealth()
    health.reset()
    health.mark_engine_available()
    health.mark_engine_warmed_up()
    snap = health.snapshot()
    assert snap.status == STATUS_ERROR
    assert snap.failed_checks == ["dispatchConnected", "transportConnected"]
    assert snap.to_dict()["failedChecks"] == ["dispatchConnected", "transportConnected"]


def test_error_with_no_checks_is_error():
    health = ServerHealth()
    health.reset()
    health.record_error("WolframScript not found")
    snap = health.snapshot()
    assert snap.status == STATUS_ERROR
    assert snap.to_dict()["error"] == "WolframScript not found"
    assert snap.failed_checks == ALL_CHECKS


def test_error_with_all_checks_is_error():
    health = ServerHealth()
    health.reset()
    _ready(health)
    health.record_error("late failure")
    snap = health.snapshot()
    assert snap.status == STATUS_ERROR
    assert snap.failed_checks == []
    assert snap.to_dict()["failedChecks"] == []


def test_first_error_wins():
    health = ServerHealth()
    health.record_error("first")
    health.record_error("second")
    assert health.snapshot().error == "first"


def test_marks_are_idempotent():
    health = ServerHealth()
    health.mark_engine_available()
    health.mark_engine_available()
    assert health.state.engine_available is True


def test_reset_clears_everything():
    health = ServerHealth()
    _ready(health)
    health.record_error("boom")
    health.reset()
    snap = health.snapshot()
    assert snap.status == STATUS_INITIALIZING
    assert snap.error is None
    assert snap.started_at is not None


def test_shutdown_clears_started_at():
    health = ServerHealth()
    health.reset()
    _ready(health)
    health.shutdown()
    snap = health.snapshot()
    assert snap.status == STATUS_INITIALIZING
    assert snap.started_at is None
    assert snap.uptime is None


def test_uptime_from_started_at():
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)
    health = ServerHealth()
    health.reset(started_at=started)
    snap = health.snapshot(now=started + timedelta(seconds=90))
    assert snap.uptime == 90.0
    assert snap.to_dict()["startedAt"] == "2026-01-01T00:00:00Z"


def test_state_is_a_copy():
    health = ServerHealth()
    state = health.state
    state.engine_available = True
    assert health.state.engine_available is False
