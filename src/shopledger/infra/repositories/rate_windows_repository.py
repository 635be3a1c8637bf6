"""Rate windows repository - per-sender fixed-window counters.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor

from shopledger.domain.rate_limit import RateWindow
from shopledger.infra.db import for_update


def lock_window(cur: PgCursor, sender_id: str, now_ms: int) -> RateWindow:
    """Return the sender's window, locked FOR UPDATE until commit.

    A first-time sender gets an empty window (count 0) starting now; the
    insert happens first so concurrent requests always contend on the
    same row lock.
    """
    cur.execute(
        """
        INSERT INTO rate_windows (sender_id, window_start_ms, count)
        VALUES (%s, %s, 0)
        ON CONFLICT (sender_id) DO NOTHING
        """,
        (sender_id, now_ms),
    )
    row = for_update(
        cur,
        "SELECT window_start_ms, count FROM rate_windows WHERE sender_id = %s",
        (sender_id,),
    )
    window_start_ms, count = row
    return RateWindow(sender_id=sender_id, window_start_ms=int(window_start_ms), count=int(count))


def save_window(cur: PgCursor, window: RateWindow) -> None:
    cur.execute(
        """
        UPDATE rate_windows
        SET window_start_ms = %s, count = %s, updated_at = now()
        WHERE sender_id = %s
        """,
        (window.window_start_ms, window.count, window.sender_id),
    )
