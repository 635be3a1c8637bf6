"""Processed messages repository - reply cache keyed by provider message id.

Meta re-delivers webhooks it considers unacknowledged; the cached reply
lets a re-delivered message be answered without touching the ledger again.

A message is claimed (row inserted with no reply) in the same transaction
that applies its command, and the reply is filled in before commit. A
concurrent claim for the same id blocks on the unique index until the
first transaction ends.
"""

from psycopg2.extensions import cursor as PgCursor

from shopledger.infra.db import fetchone


def get_reply(cur: PgCursor, message_id: str) -> str | None:
    row = fetchone(
        cur,
        "SELECT reply FROM processed_messages WHERE message_id = %s",
        (message_id,),
    )
    return row[0] if row else None


def claim(cur: PgCursor, *, message_id: str, sender_id: str) -> bool:
    """Claim a message id for processing. First writer wins.

    Returns:
        True if claimed, False if the message was already processed.
    """
    cur.execute(
        """
        INSERT INTO processed_messages (message_id, sender_id)
        VALUES (%s, %s)
        ON CONFLICT (message_id) DO NOTHING
        """,
        (message_id, sender_id),
    )
    return cur.rowcount > 0


def set_reply(cur: PgCursor, *, message_id: str, reply: str) -> None:
    cur.execute(
        "UPDATE processed_messages SET reply = %s WHERE message_id = %s",
        (reply, message_id),
    )
