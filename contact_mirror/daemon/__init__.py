"""
contact_mirror.daemon - Periodic sync scheduler

Runs sync passes at a fixed cadence, with expedited passes on request.
"""

import re

# Default cadence between scheduled passes
DEFAULT_INTERVAL = "6h"

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: str | int) -> int:
    """Parse an interval string into seconds.

    Args:
        interval: Seconds as an int or numeric string, or a number with a
            unit suffix: "30s", "15m", "6h", "1d".

    Returns:
        Interval in seconds (always positive).

    Raises:
        ValueError: If the interval is malformed, not positive, or of the
            wrong type.
    """
    if isinstance(interval, bool) or not isinstance(interval, (str, int)):
        raise ValueError(
            f"Invalid interval type: {type(interval).__name__}. Expected str or int."
        )

    if isinstance(interval, int):
        seconds = interval
    else:
        text = interval.lower().strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = re.match(r"^(\d+)\s*([smhd])$", text)
            if not match:
                raise ValueError(
                    f"Invalid interval format: '{interval}'. "
                    "Use format like '30s', '15m', '6h', or '1d'."
                )
            seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]

    if seconds <= 0:
        raise ValueError(f"Interval must be positive, got '{interval}'")
    return seconds


# Imported after parse_interval; the config loader imports this package
from contact_mirror.daemon.scheduler import (  # noqa: E402
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonScheduler,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
)

__all__ = [
    "DEFAULT_INTERVAL",
    "parse_interval",
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
]
