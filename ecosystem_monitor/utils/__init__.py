"""
Utilities module for the ecosystem monitor.

Provides:
- Async helpers (settled fan-out, retry)
- Structured logging configuration
"""

from ecosystem_monitor.utils.async_helpers import (
    async_retry,
    gather_settled,
)

from ecosystem_monitor.utils.logging_config import (
    setup_logging,
    LoggingConfig,
    LogContext,
    set_cycle_id,
    get_cycle_id,
    set_context,
    clear_context,
    log_duration,
)

__all__ = [
    # Async helpers
    "async_retry",
    "gather_settled",
    # Logging
    "setup_logging",
    "LoggingConfig",
    "LogContext",
    "set_cycle_id",
    "get_cycle_id",
    "set_context",
    "clear_context",
    "log_duration",
]
