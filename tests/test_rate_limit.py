"""Tests for the fixed-window rate limiter."""

from concurrent.futures import ThreadPoolExecutor

from shopledger.domain.ledger import InMemoryLedger
from shopledger.domain.rate_limit import (
    MAX_MESSAGES_PER_WINDOW,
    WINDOW_MS,
    RateLimiter,
    RateWindow,
    consume,
)

SENDER = "919876543210"
T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now_ms: int = T0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


class TestConsume:
    """Pure window arithmetic."""

    def test_new_sender_creates_window(self):
        window, decision = consume(None, sender_id=SENDER, now_ms=T0)

        assert window == RateWindow(SENDER, T0, 1)
        assert not decision.blocked
        assert decision.retry_after_ms == 0

    def test_increment_within_window(self):
        window, decision = consume(RateWindow(SENDER, T0, 3), sender_id=SENDER, now_ms=T0 + 10)

        assert window == RateWindow(SENDER, T0, 4)
        assert not decision.blocked

    def test_reaching_limit_is_allowed(self):
        window, decision = consume(
            RateWindow(SENDER, T0, MAX_MESSAGES_PER_WINDOW - 1), sender_id=SENDER, now_ms=T0
        )

        assert window.count == MAX_MESSAGES_PER_WINDOW
        assert not decision.blocked

    def test_over_limit_blocks_without_incrementing(self):
        full = RateWindow(SENDER, T0, MAX_MESSAGES_PER_WINDOW)

        window, decision = consume(full, sender_id=SENDER, now_ms=T0 + 20_000)

        assert window == full
        assert decision.blocked
        assert decision.retry_after_ms == WINDOW_MS - 20_000

    def test_exactly_window_length_elapsed_is_same_window(self):
        full = RateWindow(SENDER, T0, MAX_MESSAGES_PER_WINDOW)

        _, decision = consume(full, sender_id=SENDER, now_ms=T0 + WINDOW_MS)

        assert decision.blocked
        assert decision.retry_after_ms == 0

    def test_expired_window_resets(self):
        full = RateWindow(SENDER, T0, MAX_MESSAGES_PER_WINDOW)

        window, decision = consume(full, sender_id=SENDER, now_ms=T0 + WINDOW_MS + 1)

        assert window == RateWindow(SENDER, T0 + WINDOW_MS + 1, 1)
        assert not decision.blocked


class TestRateLimiter:
    """Limiter over the in-memory ledger counter."""

    def test_fifteen_allowed_sixteenth_blocked(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryLedger(), clock=clock)

        for i in range(MAX_MESSAGES_PER_WINDOW):
            clock.now_ms = T0 + i * 100
            assert not limiter.check_and_consume(SENDER).blocked

        decision = limiter.check_and_consume(SENDER)
        assert decision.blocked
        assert decision.retry_after_ms > 0

    def test_resets_after_window(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryLedger(), clock=clock)

        for _ in range(MAX_MESSAGES_PER_WINDOW + 3):
            limiter.check_and_consume(SENDER)

        clock.now_ms = T0 + WINDOW_MS + 1
        assert not limiter.check_and_consume(SENDER).blocked

    def test_senders_are_independent(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryLedger(), clock=clock)

        for _ in range(MAX_MESSAGES_PER_WINDOW):
            limiter.check_and_consume(SENDER)

        assert limiter.check_and_consume(SENDER).blocked
        assert not limiter.check_and_consume("966500000000").blocked

    def test_blocked_attempts_do_not_extend_window(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryLedger(), clock=clock)

        for _ in range(MAX_MESSAGES_PER_WINDOW):
            limiter.check_and_consume(SENDER)

        clock.now_ms = T0 + 30_000
        first = limiter.check_and_consume(SENDER)
        clock.now_ms = T0 + 45_000
        second = limiter.check_and_consume(SENDER)

        assert first.retry_after_ms == 30_000
        assert second.retry_after_ms == 15_000

    def test_concurrent_increments_are_not_lost(self):
        ledger = InMemoryLedger()
        limiter = RateLimiter(ledger, clock=FakeClock())

        with ThreadPoolExecutor(max_workers=8) as pool:
            decisions = list(pool.map(lambda _: limiter.check_and_consume(SENDER), range(40)))

        allowed = [d for d in decisions if not d.blocked]
        assert len(allowed) == MAX_MESSAGES_PER_WINDOW
