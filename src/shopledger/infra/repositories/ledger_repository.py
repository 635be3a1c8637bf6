"""Ledger entries repository - persistence for chat-recorded transactions.

Uses raw SQL with psycopg2 (no ORM).
"""

from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from shopledger.domain.ledger import DeletedEntry, LedgerSummary, NewLedgerEntry
from shopledger.infra.db import fetchone


def insert_entry(cur: PgCursor, entry: NewLedgerEntry) -> str:
    """Insert a ledger entry.

    Args:
        cur: Database cursor (within transaction).
        entry: Entry fields with tax and net amounts already computed.

    Returns:
        The generated entry ID (as string).
    """
    cur.execute(
        """
        INSERT INTO ledger_entries (
            sender_id, external_message_id, account_id,
            amount, description, kind, category, country,
            tax_rate, tax_amount, net_amount
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            entry.sender_id,
            entry.external_message_id,
            entry.account_id,
            entry.amount,
            entry.description,
            entry.kind,
            entry.category,
            entry.country,
            entry.tax_rate,
            entry.tax_amount,
            entry.net_amount,
        ),
    )
    return str(cur.fetchone()[0])


def delete_most_recent(cur: PgCursor, sender_id: str) -> DeletedEntry | None:
    """Delete the sender's most recently created entry.

    Ties on created_at are broken by the highest id. The row is locked
    before deletion so concurrent undos cannot delete it twice.

    Returns:
        The deleted entry, or None if the sender has no entries.
    """
    row = fetchone(
        cur,
        """
        DELETE FROM ledger_entries
        WHERE id = (
            SELECT id FROM ledger_entries
            WHERE sender_id = %s
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            FOR UPDATE
        )
        RETURNING description, amount, kind
        """,
        (sender_id,),
    )
    if row is None:
        return None
    description, amount, kind = row
    return DeletedEntry(description=description, amount=Decimal(amount), kind=kind)


def summarize(cur: PgCursor, sender_id: str) -> LedgerSummary:
    """Aggregate income, expense and tax for a sender. Read-only."""
    row = fetchone(
        cur,
        """
        SELECT
            COALESCE(SUM(amount) FILTER (WHERE kind = 'income'), 0),
            COALESCE(SUM(amount) FILTER (WHERE kind = 'expense'), 0),
            COALESCE(SUM(tax_amount), 0),
            COUNT(*)
        FROM ledger_entries
        WHERE sender_id = %s
        """,
        (sender_id,),
    )
    income, expense, tax, count = row
    return LedgerSummary(
        income=Decimal(income),
        expense=Decimal(expense),
        tax=Decimal(tax),
        count=int(count),
    )
