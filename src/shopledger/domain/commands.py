"""Dispatch parsed intents against the ledger and compose reply text.

Every operation is scoped to a single sender id.
"""

from shopledger.domain.intents import Command, ParsedIntent, Transaction
from shopledger.domain.ledger import DeletedEntry, LedgerEntries, LedgerSummary, NewLedgerEntry
from shopledger.observability.logging import get_logger
from shopledger.observability.redaction import mask_phone, safe_log_context
from shopledger.whatsapp.templates import format_amount, render

logger = get_logger(__name__)


class CommandDispatcher:
    """Runs transactions and commands for one sender at a time."""

    def __init__(self, ledger: LedgerEntries) -> None:
        self._ledger = ledger

    def record(self, sender_id: str, message_id: str, transaction: Transaction) -> str:
        """Insert a transaction as a ledger entry with computed tax and net amounts."""
        entry = NewLedgerEntry.from_transaction(
            transaction, sender_id=sender_id, external_message_id=message_id
        )
        entry_id = self._ledger.insert_entry(entry)
        logger.info(
            "ledger entry recorded",
            extra={
                "extra_fields": safe_log_context(
                    sender=mask_phone(sender_id),
                    entry_id=entry_id,
                    kind=entry.kind,
                    country=entry.country,
                )
            },
        )
        return entry_id

    def undo(self, sender_id: str) -> DeletedEntry | None:
        """Delete the sender's most recent entry. None when there is nothing to undo."""
        deleted = self._ledger.delete_most_recent(sender_id)
        logger.info(
            "undo requested",
            extra={
                "extra_fields": safe_log_context(
                    sender=mask_phone(sender_id), deleted=deleted is not None
                )
            },
        )
        return deleted

    def balance(self, sender_id: str) -> LedgerSummary:
        return self._ledger.summarize(sender_id)

    def dispatch(self, sender_id: str, message_id: str, intent: ParsedIntent) -> str:
        """Apply an intent and return the reply text for the sender.

        Ledger errors propagate to the caller.
        """
        if isinstance(intent, Command):
            if intent.name == "undo":
                deleted = self.undo(sender_id)
                if deleted is None:
                    return render("nothing_to_undo")
                return render(
                    "undone",
                    {
                        "kind": deleted.kind,
                        "amount": format_amount(deleted.amount),
                        "description": deleted.description,
                    },
                )

            summary = self.balance(sender_id)
            return render(
                "balance",
                {
                    "income": format_amount(summary.income),
                    "expense": format_amount(summary.expense),
                    "tax": format_amount(summary.tax),
                    "net": format_amount(summary.net),
                },
            )

        if isinstance(intent, Transaction):
            self.record(sender_id, message_id, intent)
            return render(
                "recorded",
                {
                    "kind": intent.kind,
                    "amount": format_amount(intent.amount),
                    "category": intent.category,
                },
            )

        return render("usage_hint")
