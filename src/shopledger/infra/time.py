"""Clock helpers. Ledger rows use aware UTC datetimes, rate windows use epoch ms."""

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Return current wall clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000
