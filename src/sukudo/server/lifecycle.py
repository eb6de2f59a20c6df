"""Daemon lifecycle state: uptime and graceful shutdown."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass
class ShutdownState:
    """Tracks shutdown progress for graceful termination."""

    initiated: datetime | None = None
    """UTC timestamp when shutdown was initiated, None if not shutting down."""

    timeout_deadline: datetime | None = None
    """UTC timestamp after which remaining tasks will be cancelled."""

    @property
    def is_shutting_down(self) -> bool:
        return self.initiated is not None

    @property
    def is_timed_out(self) -> bool:
        if self.timeout_deadline is None:
            return False
        return datetime.now(timezone.utc) >= self.timeout_deadline


@dataclass
class DaemonLifecycle:
    """Startup time and shutdown coordination for `sukudo serve`."""

    shutdown_timeout: float = 30.0
    """Seconds to wait for graceful shutdown before cancelling tasks."""

    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    shutdown_state: ShutdownState = field(default_factory=ShutdownState)

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.start_time).total_seconds()

    @property
    def is_shutting_down(self) -> bool:
        return self.shutdown_state.is_shutting_down

    def initiate_shutdown(self) -> None:
        """Record the start of shutdown. Later calls have no effect."""
        if self.shutdown_state.initiated is not None:
            return

        now = datetime.now(timezone.utc)
        self.shutdown_state.initiated = now
        self.shutdown_state.timeout_deadline = now + timedelta(
            seconds=self.shutdown_timeout
        )
