"""
Server readiness state.

Startup flips four checks from false to true, one stage at a time. The
state is owned by a ServerHealth instance that is handed to the startup
sequence, the HTTP /health endpoint and the server_status tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any

STATUS_OK = "ok"
STATUS_INITIALIZING = "initializing"
STATUS_ERROR = "error"

# Wire names, in report order
CHECK_NAMES = {
    "engine_available": "engineAvailable",
    "engine_warmed_up": "engineWarmedUp",
    "dispatch_connected": "dispatchConnected",
    "transport_connected": "transportConnected",
}


def _isoformat(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


@dataclass
class ServerHealthState:
    engine_available: bool = False
    engine_warmed_up: bool = False
    dispatch_connected: bool = False
    transport_connected: bool = False
    initialization_error: str | None = None
    started_at: datetime | None = None

    def checks(self) -> dict[str, bool]:
        return {wire: getattr(self, attr) for attr, wire in CHECK_NAMES.items()}


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time view of ServerHealthState."""

    status: str
    checks: dict[str, bool]
    error: str | None = None
    uptime: float | None = None
    started_at: datetime | None = None
    failed_checks: list[str] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        return 200 if self.status == STATUS_OK else 503

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status,
            "uptime": self.uptime,
            "startedAt": _isoformat(self.started_at) if self.started_at else None,
            "checks": dict(self.checks),
        }
        if self.error:
            d["error"] = self.error
        if self.status == STATUS_ERROR:
            d["failedChecks"] = list(self.failed_checks)
        return d


def derive_status(state: ServerHealthState) -> str:
    """ok if every check passed with no error; initializing if none has; else error."""
    checks = state.checks().values()
    if state.initialization_error is None:
        if all(checks):
            return STATUS_OK
        if not any(checks):
            return STATUS_INITIALIZING
    return STATUS_ERROR


class ServerHealth:
    """Lock-guarded readiness state. Checks only move false -> true until reset."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._state = ServerHealthState()

    def reset(self, started_at: datetime | None = None) -> None:
        """Start a fresh lifecycle. started_at defaults to now."""
        with self._lock:
            self._state = ServerHealthState(started_at=started_at or datetime.now(timezone.utc))

    def shutdown(self) -> None:
        with self._lock:
            self._state = ServerHealthState()

    def _mark(self, attr: str) -> None:
        with self._lock:
            setattr(self._state, attr, True)

    def mark_engine_available(self) -> None:
        self._mark("engine_available")

    def mark_engine_warmed_up(self) -> None:
        self._mark("engine_warmed_up")

    def mark_dispatch_connected(self) -> None:
        self._mark("dispatch_connected")

    def mark_transport_connected(self) -> None:
        self._mark("transport_connected")

    def record_error(self, message: str) -> None:
        """Keep the first initialization error; later ones are dropped."""
        with self._lock:
            if self._state.initialization_error is None:
                self._state.initialization_error = message

    @property
    def state(self) -> ServerHealthState:
        with self._lock:
            return replace(self._state)

    def snapshot(self, now: datetime | None = None) -> HealthSnapshot:
        state = self.state
        status = derive_status(state)
        uptime = None
        if state.started_at is not None:
            now = now or datetime.now(timezone.utc)
            uptime = max(0.0, (now - state.started_at).total_seconds())
        checks = state.checks()
        failed = [name for name, ok in checks.items() if not ok] if status == STATUS_ERROR else []
        return HealthSnapshot(
            status=status,
            checks=checks,
            error=state.initialization_error,
            uptime=uptime,
            started_at=state.started_at,
            failed_checks=failed,
        )
