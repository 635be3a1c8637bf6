"""Intent parsing result models.

NO raw text stored outside Transaction.description, which becomes the
ledger entry description.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Union

Kind = Literal["income", "expense"]
Country = Literal["IN", "SA"]
CommandName = Literal["undo", "balance"]


@dataclass(frozen=True)
class Transaction:
    """A bookkeeping transaction extracted from a message."""

    amount: Decimal
    description: str
    kind: Kind
    category: str
    country: Country
    tax_rate: Decimal | None = None


@dataclass(frozen=True)
class Command:
    """A recognized command (undo, balance)."""

    name: CommandName


@dataclass(frozen=True)
class Unrecognized:
    """Text that is neither a command nor a transaction."""


ParsedIntent = Union[Transaction, Command, Unrecognized]
