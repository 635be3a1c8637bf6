"""Postgres-backed LedgerStore.

Each method runs in its own short transaction (txn()). Rate counter
updates lock the sender's row, so concurrent webhook invocations for the
same sender serialize instead of losing increments. apply_once claims the
message id, runs the command and stores the reply in one transaction.
"""

from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from shopledger.domain.ledger import (
    DeletedEntry,
    LedgerError,
    LedgerSummary,
    MessageHandler,
    NewLedgerEntry,
)
from shopledger.domain.rate_limit import RateDecision, consume
from shopledger.infra.db import txn
from shopledger.infra.repositories import (
    ledger_repository,
    processed_messages_repository,
    rate_windows_repository,
)


class CursorEntries:
    """LedgerEntries bound to an open transaction's cursor."""

    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def insert_entry(self, entry: NewLedgerEntry) -> str:
        return ledger_repository.insert_entry(self._cur, entry)

    def delete_most_recent(self, sender_id: str) -> DeletedEntry | None:
        return ledger_repository.delete_most_recent(self._cur, sender_id)

    def summarize(self, sender_id: str) -> LedgerSummary:
        return ledger_repository.summarize(self._cur, sender_id)


class PostgresLedger:
    """LedgerStore over the ledger_entries, rate_windows and processed_messages tables."""

    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn

    @contextmanager
    def _txn(self, operation: str) -> Iterator[PgCursor]:
        try:
            with txn(dsn=self._dsn) as cur:
                yield cur
        except psycopg2.Error as e:
            raise LedgerError(f"{operation} failed: {type(e).__name__}") from e

    def insert_entry(self, entry: NewLedgerEntry) -> str:
        with self._txn("insert_entry") as cur:
            return CursorEntries(cur).insert_entry(entry)

    def delete_most_recent(self, sender_id: str) -> DeletedEntry | None:
        with self._txn("delete_most_recent") as cur:
            return CursorEntries(cur).delete_most_recent(sender_id)

    def summarize(self, sender_id: str) -> LedgerSummary:
        with self._txn("summarize") as cur:
            return CursorEntries(cur).summarize(sender_id)

    def increment_rate_counter(self, sender_id: str, now_ms: int) -> RateDecision:
        with self._txn("increment_rate_counter") as cur:
            window = rate_windows_repository.lock_window(cur, sender_id, now_ms)
            updated, decision = consume(window, sender_id=sender_id, now_ms=now_ms)
            if updated != window:
                rate_windows_repository.save_window(cur, updated)
            return decision

    def get_processed_reply(self, message_id: str) -> str | None:
        with self._txn("get_processed_reply") as cur:
            return processed_messages_repository.get_reply(cur, message_id)

    def apply_once(
        self, message_id: str, sender_id: str, handler: MessageHandler
    ) -> tuple[str, bool]:
        """Run handler inside the transaction that claims message_id.

        An exception from handler rolls back its entry changes and the claim,
        so a redelivery of the message is processed again from scratch.
        """
        with self._txn("apply_once") as cur:
            if not processed_messages_repository.claim(
                cur, message_id=message_id, sender_id=sender_id
            ):
                return processed_messages_repository.get_reply(cur, message_id) or "", False

            reply = handler(CursorEntries(cur))
            processed_messages_repository.set_reply(cur, message_id=message_id, reply=reply)
            return reply, True
