"""Instrument communication statistics.

Counts command/response exchanges per device so the registry can decide
when a flaky link has become a dead one:
- Total, successful and failed exchanges
- Consecutive failures (reset by any success)
- Error categorization (timeout, transport, parse)
- Rolling window of recent round-trip times

Thread-safe: the command queue records from the polling thread while the
management/setup pages read summaries from request threads.

Example:
    stats = CommStats(device="telescope/0")
    stats.record_exchange(duration_ms=12.5, success=True)
    stats.record_exchange(duration_ms=2000, success=False, error_type="timeout")

    summary = stats.get_summary()
    print(summary.consecutive_failures)  # 1
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

#: Number of exchange durations kept for the rolling average.
DEFAULT_STATS_WINDOW_SIZE: int = 200


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


@dataclass
class CommStatsSummary:
    """Snapshot of one device's link health.

    Attributes:
        device: Device label, e.g. "telescope/0".
        total_exchanges: Exchanges attempted since reset.
        successful_exchanges: Exchanges that produced a reply.
        failed_exchanges: Exchanges that timed out or failed.
        consecutive_failures: Failures since the last success.
        avg_duration_ms: Mean round trip over the rolling window.
        max_duration_ms: Slowest round trip in the window.
        error_counts: Failures by category.
        last_error: Message of the most recent failure.
        last_error_time: When the most recent failure happened.
        uptime_seconds: Seconds since the collector was created or reset.
    """

    device: str
    total_exchanges: int = 0
    successful_exchanges: int = 0
    failed_exchanges: int = 0
    consecutive_failures: int = 0
    avg_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_error: str | None = None
    last_error_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict for the setup page."""
        return {
            "device": self.device,
            "total_exchanges": self.total_exchanges,
            "successful_exchanges": self.successful_exchanges,
            "failed_exchanges": self.failed_exchanges,
            "consecutive_failures": self.consecutive_failures,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "error_counts": dict(self.error_counts),
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_time.isoformat() if self.last_error_time else None
            ),
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


class CommStats:
    """Thread-safe exchange counter for one device."""

    def __init__(
        self,
        device: str = "",
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        """Create an empty collector.

        Args:
            device: Label used in summaries and log lines.
            window_size: Number of recent durations kept for averages.

        Raises:
            ValueError: If window_size is not positive.
        """
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self.device = device
        self._durations: deque[float] = deque(maxlen=window_size)
        self._lock = threading.Lock()
        self._start_time = time.monotonic()
        self._total = 0
        self._failed = 0
        self._consecutive = 0
        self._error_counts: dict[str, int] = {}
        self._last_error: str | None = None
        self._last_error_time: datetime | None = None

    def record_exchange(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
        message: str | None = None,
    ) -> int:
        """Record one command/response exchange.

        Args:
            duration_ms: Time from write to terminator (or to giving up).
            success: Whether a complete reply arrived.
            error_type: Failure category such as "timeout" or "transport".
            message: Human-readable failure detail.

        Returns:
            The consecutive failure count after recording.
        """
        with self._lock:
            self._total += 1
            self._durations.append(duration_ms)
            if success:
                self._consecutive = 0
            else:
                self._failed += 1
                self._consecutive += 1
                category = error_type or "unknown"
                self._error_counts[category] = self._error_counts.get(category, 0) + 1
                self._last_error = message or category
                self._last_error_time = _utc_now()
            return self._consecutive

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def get_summary(self) -> CommStatsSummary:
        """Build a consistent snapshot under the lock."""
        with self._lock:
            durations = list(self._durations)
            return CommStatsSummary(
                device=self.device,
                total_exchanges=self._total,
                successful_exchanges=self._total - self._failed,
                failed_exchanges=self._failed,
                consecutive_failures=self._consecutive,
                avg_duration_ms=sum(durations) / len(durations) if durations else 0.0,
                max_duration_ms=max(durations) if durations else 0.0,
                error_counts=dict(self._error_counts),
                last_error=self._last_error,
                last_error_time=self._last_error_time,
                uptime_seconds=time.monotonic() - self._start_time,
            )

    def reset_consecutive(self) -> None:
        """Forget the current failure streak (called after a reconnect)."""
        with self._lock:
            self._consecutive = 0

    def reset(self) -> None:
        """Clear all counters."""
        with self._lock:
            self._durations.clear()
            self._total = 0
            self._failed = 0
            self._consecutive = 0
            self._error_counts.clear()
            self._last_error = None
            self._last_error_time = None
            self._start_time = time.monotonic()
