"""Observability module for alpacapi.

Provides structured logging and per-device communication statistics.

Example:
    from alpacapi.observability import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Server started")

    with LogContext(device="telescope/0"):
        logger.info("Slew requested", ra_hours=10.0, dec_degrees=45.0)

Statistics Example:
    from alpacapi.observability import CommStats

    stats = CommStats(device="telescope/0")
    stats.record_exchange(duration_ms=8.0, success=True)
    print(stats.get_summary().to_dict())
"""

from alpacapi.observability.comm_stats import (
    CommStats,
    CommStatsSummary,
)
from alpacapi.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "CommStats",
    "CommStatsSummary",
]
