"""Ledger collaborator contract and in-memory implementation.

The pipeline never touches storage directly; it calls the LedgerStore
methods below. Implementations must apply each method atomically per
sender (rate counter read-modify-write, most-recent delete), and
apply_once must commit a command's entry changes together with its
cached reply.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Protocol

from shopledger.domain.intents import Country, Kind, Transaction
from shopledger.domain.rate_limit import RateDecision, RateWindow, consume
from shopledger.infra.time import utc_now

_ZERO = Decimal("0")


class LedgerError(Exception):
    """Raised when a ledger operation fails."""

    pass


def compute_tax(amount: Decimal, kind: Kind, tax_rate: Decimal | None) -> tuple[Decimal, Decimal]:
    """Compute (tax_amount, net_amount) for an entry.

    tax_amount = amount * tax_rate / 100 (0 without a rate).
    net_amount = amount - tax_amount for income, amount for expense.
    """
    tax_amount = amount * tax_rate / 100 if tax_rate else _ZERO
    net_amount = amount - tax_amount if kind == "income" else amount
    return tax_amount, net_amount


@dataclass(frozen=True)
class NewLedgerEntry:
    """Fields for a ledger insert. Entries from chat have no owning account."""

    sender_id: str
    external_message_id: str
    amount: Decimal
    description: str
    kind: Kind
    category: str
    country: Country
    tax_rate: Decimal | None
    tax_amount: Decimal
    net_amount: Decimal
    account_id: str | None = None

    @classmethod
    def from_transaction(
        cls, transaction: Transaction, *, sender_id: str, external_message_id: str
    ) -> NewLedgerEntry:
        tax_amount, net_amount = compute_tax(
            transaction.amount, transaction.kind, transaction.tax_rate
        )
        return cls(
            sender_id=sender_id,
            external_message_id=external_message_id,
            amount=transaction.amount,
            description=transaction.description,
            kind=transaction.kind,
            category=transaction.category,
            country=transaction.country,
            tax_rate=transaction.tax_rate,
            tax_amount=tax_amount,
            net_amount=net_amount,
        )


@dataclass(frozen=True)
class DeletedEntry:
    description: str
    amount: Decimal
    kind: Kind


@dataclass(frozen=True)
class LedgerSummary:
    income: Decimal = _ZERO
    expense: Decimal = _ZERO
    tax: Decimal = _ZERO
    count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class LedgerEntries(Protocol):
    """Entry operations a command runs against."""

    def insert_entry(self, entry: NewLedgerEntry) -> str: ...

    def delete_most_recent(self, sender_id: str) -> DeletedEntry | None: ...

    def summarize(self, sender_id: str) -> LedgerSummary: ...


# Runs one message's command and returns the reply text
MessageHandler = Callable[[LedgerEntries], str]


class LedgerStore(LedgerEntries, Protocol):
    """Operations the webhook pipeline needs from the ledger."""

    def increment_rate_counter(self, sender_id: str, now_ms: int) -> RateDecision: ...

    def get_processed_reply(self, message_id: str) -> str | None: ...

    def apply_once(
        self, message_id: str, sender_id: str, handler: MessageHandler
    ) -> tuple[str, bool]:
        """Run handler at most once per message id.

        The entry changes made by handler and the cached reply commit
        together or not at all. Returns (reply, applied); applied is False
        when the message was already processed and reply is the cached one.
        """
        ...


@dataclass
class _StoredEntry:
    id: str
    seq: int
    created_at: datetime
    entry: NewLedgerEntry = field(repr=False)


class InMemoryLedger:
    """Process-local LedgerStore for local dev and tests.

    A single reentrant lock serializes every operation, which also gives
    per-sender atomicity for the rate counter. apply_once holds it for the
    whole command and restores the entries if the command fails.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._entries: list[_StoredEntry] = []
        self._windows: dict[str, RateWindow] = {}
        self._replies: dict[str, tuple[str, str]] = {}

    def insert_entry(self, entry: NewLedgerEntry) -> str:
        with self._lock:
            seq = next(self._seq)
            entry_id = f"entry_{seq}"
            self._entries.append(_StoredEntry(entry_id, seq, utc_now(), entry))
            return entry_id

    def delete_most_recent(self, sender_id: str) -> DeletedEntry | None:
        with self._lock:
            own = [e for e in self._entries if e.entry.sender_id == sender_id]
            if not own:
                return None
            last = max(own, key=lambda e: (e.created_at, e.seq))
            self._entries.remove(last)
            return DeletedEntry(
                description=last.entry.description,
                amount=last.entry.amount,
                kind=last.entry.kind,
            )

    def summarize(self, sender_id: str) -> LedgerSummary:
        with self._lock:
            own = [e.entry for e in self._entries if e.entry.sender_id == sender_id]
        return LedgerSummary(
            income=sum((e.amount for e in own if e.kind == "income"), _ZERO),
            expense=sum((e.amount for e in own if e.kind == "expense"), _ZERO),
            tax=sum((e.tax_amount for e in own), _ZERO),
            count=len(own),
        )

    def increment_rate_counter(self, sender_id: str, now_ms: int) -> RateDecision:
        with self._lock:
            window, decision = consume(
                self._windows.get(sender_id), sender_id=sender_id, now_ms=now_ms
            )
            self._windows[sender_id] = window
            return decision

    def get_processed_reply(self, message_id: str) -> str | None:
        with self._lock:
            record = self._replies.get(message_id)
        return record[1] if record else None

    def apply_once(
        self, message_id: str, sender_id: str, handler: MessageHandler
    ) -> tuple[str, bool]:
        with self._lock:
            record = self._replies.get(message_id)
            if record is not None:
                return record[1], False

            snapshot = list(self._entries)
            try:
                reply = handler(self)
                self.store_reply(message_id, sender_id, reply)
            except Exception:
                self._entries = snapshot
                raise
            return reply, True

    def store_reply(self, message_id: str, sender_id: str, reply: str) -> None:
        """Cache the reply for a message id. Called by apply_once under the lock."""
        self._replies[message_id] = (sender_id, reply)

    def entries_for(self, sender_id: str) -> list[NewLedgerEntry]:
        """Snapshot of a sender's entries, oldest first."""
        with self._lock:
            return [e.entry for e in self._entries if e.entry.sender_id == sender_id]
