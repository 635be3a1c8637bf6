"""Fixed-window rate limiting per sender.

Counts messages in non-overlapping windows that restart on expiry.
Bursts straddling a window boundary can reach up to 2x the limit; this
approximation is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from shopledger.infra.time import epoch_ms

if TYPE_CHECKING:
    from shopledger.domain.ledger import LedgerStore

WINDOW_MS = 60_000
MAX_MESSAGES_PER_WINDOW = 15


@dataclass(frozen=True)
class RateWindow:
    """Persisted counter for one sender."""

    sender_id: str
    window_start_ms: int
    count: int


@dataclass(frozen=True)
class RateDecision:
    blocked: bool
    retry_after_ms: int = 0


def consume(
    window: RateWindow | None,
    *,
    sender_id: str,
    now_ms: int,
    window_ms: int = WINDOW_MS,
    limit: int = MAX_MESSAGES_PER_WINDOW,
) -> tuple[RateWindow, RateDecision]:
    """Apply one message to a sender's window.

    Args:
        window: Current persisted window, or None for a new sender.
        sender_id: Sender identity (window key).
        now_ms: Current time in epoch milliseconds.
        window_ms: Window length.
        limit: Messages allowed per window.

    Returns:
        Tuple of (window to persist, decision). When blocked, the window is
        returned unchanged (count stays capped at the limit).
    """
    if window is None:
        return RateWindow(sender_id, now_ms, 1), RateDecision(blocked=False)

    elapsed = now_ms - window.window_start_ms
    if elapsed > window_ms:
        return RateWindow(sender_id, now_ms, 1), RateDecision(blocked=False)

    if window.count + 1 <= limit:
        updated = RateWindow(sender_id, window.window_start_ms, window.count + 1)
        return updated, RateDecision(blocked=False)

    retry_after_ms = max(0, window_ms - elapsed)
    return window, RateDecision(blocked=True, retry_after_ms=retry_after_ms)


class RateLimiter:
    """Checks and consumes rate budget through the ledger's atomic counter."""

    def __init__(self, store: LedgerStore, clock=epoch_ms) -> None:
        self._store = store
        self._clock = clock

    def check_and_consume(self, sender_id: str) -> RateDecision:
        return self._store.increment_rate_counter(sender_id, self._clock())
