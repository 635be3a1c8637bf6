"""Ledger, rate window and processed message tables (SQL-only).

Revision ID: 001_ledger_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


_SQL = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    id BIGSERIAL PRIMARY KEY,
    sender_id TEXT NOT NULL,
    external_message_id TEXT,
    account_id TEXT,
    amount NUMERIC(14, 2) NOT NULL CHECK (amount >= 0),
    description TEXT NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('income', 'expense')),
    category TEXT NOT NULL,
    country TEXT NOT NULL CHECK (country IN ('IN', 'SA')),
    tax_rate NUMERIC(5, 2),
    tax_amount NUMERIC NOT NULL DEFAULT 0,
    net_amount NUMERIC NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS ledger_entries_sender_recent_idx
    ON ledger_entries (sender_id, created_at DESC, id DESC);

CREATE TABLE IF NOT EXISTS rate_windows (
    sender_id TEXT PRIMARY KEY,
    window_start_ms BIGINT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS processed_messages (
    message_id TEXT PRIMARY KEY,
    sender_id TEXT NOT NULL,
    reply TEXT,  -- set before the claiming transaction commits
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS processed_messages")
    op.execute("DROP TABLE IF EXISTS rate_windows")
    op.execute("DROP TABLE IF EXISTS ledger_entries")
