# PATH: core/time.py
"""
Time utilities for Kiln.

All timestamps stored in the ledger are timezone-aware UTC.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def monotonic() -> float:
    """Monotonic clock for deadlines and latency measurement."""
    return time.monotonic()


def from_unix(seconds: int) -> Optional[datetime]:
    """
    Convert an on-chain Unix timestamp to an aware UTC datetime.

    Returns None for zero or negative values, which contracts use for "unset".
    """
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
