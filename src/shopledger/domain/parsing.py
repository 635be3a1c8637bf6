"""Deterministic intent parsing from shopkeeper messages.

NO LLM. Uses regex and heuristics.
Security: NEVER log raw text (PII).
"""

import re
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

from shopledger.domain.intents import (
    Command,
    Country,
    Kind,
    ParsedIntent,
    Transaction,
    Unrecognized,
)

# Suggested tax rate (percent) for income by country; expenses default to 0
DEFAULT_INCOME_TAX_RATES: dict[str, Decimal] = {
    "IN": Decimal("18"),  # GST
    "SA": Decimal("15"),  # VAT
}

DEFAULT_CATEGORIES: dict[str, str] = {
    "income": "sales",
    "expense": "purchases",
}

# First entry is the fallback when no hint is present
SUPPORTED_COUNTRIES: tuple[Country, ...] = ("IN", "SA")

_CENT = Decimal("0.01")

# Largest amount the NUMERIC(14, 2) ledger column holds
MAX_AMOUNT = Decimal("999999999999.99")

# Country hints (symbols, currency codes, names, tax names)
_IN_HINTS = re.compile(r"₹|\b(?:inr|rs\.?|rupees?|india|indian|gst)\b", re.IGNORECASE)
_SA_HINTS = re.compile(r"﷼|\b(?:sar|riyals?|saudi|ksa|vat)\b", re.IGNORECASE)

# 2,500.75 | 1,00,000 | 2500 | 2.5 with optional k suffix
# Groups: 1=number, 2=k suffix
_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d{1,2}(?:,\d{2})*,\d{3}(?:\.\d+)?|\d+(?:\.\d+)?)(?!\d)"
_AMOUNT = rf"{_NUMBER}(?:\s*(k)\b)?"
_CURRENCY_PREFIX = r"(?:₹|﷼|\brs\.?|\binr\b|\bsar\b)\s*"

_PREFIXED_AMOUNT = re.compile(rf"{_CURRENCY_PREFIX}{_AMOUNT}", re.IGNORECASE)
_SUFFIXED_AMOUNT = re.compile(rf"(?<![\w.]){_AMOUNT}\s*(?:inr|sar|rs)\b", re.IGNORECASE)
_BARE_AMOUNT = re.compile(rf"(?<![\w.]){_AMOUNT}", re.IGNORECASE)

_INCOME_WORDS = re.compile(
    r"\b(?:sold|sale|sales|received|income)\b|\bpaid\s+to\s+me\b",
    re.IGNORECASE,
)
_EXPENSE_WORDS = re.compile(
    r"\b(?:bought|purchase|purchased|purchases|spent|expense|expenses)\b"
    r"|\bpaid\b(?!\s+to\s+me\b)",
    re.IGNORECASE,
)

# Second-chance patterns: classification verb directly followed by a number
# Groups: 1=verb, 2=number, 3=k suffix
_FALLBACK_PATTERNS = [
    re.compile(
        rf"\b(sold|received)\s+(?:for\s+|of\s+)?(?:{_CURRENCY_PREFIX})?{_AMOUNT}",
        re.IGNORECASE,
    ),
    re.compile(
        rf"\b(bought|spent|paid)\s+(?:for\s+|of\s+)?(?:{_CURRENCY_PREFIX})?{_AMOUNT}",
        re.IGNORECASE,
    ),
]

_FALLBACK_KINDS: dict[str, Kind] = {
    "sold": "income",
    "received": "income",
    "bought": "expense",
    "spent": "expense",
    "paid": "expense",
}


def _to_amount(number: str, k_suffix: str | None) -> Decimal | None:
    """Convert a matched number (+ optional k suffix) into a positive 2dp Decimal.

    Returns None for zero or for amounts above MAX_AMOUNT.
    """
    try:
        amount = Decimal(number.replace(",", ""))
        if k_suffix:
            amount *= 1000
        amount = amount.quantize(_CENT, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        # More digits than the decimal context can hold
        return None
    if amount <= 0 or amount > MAX_AMOUNT:
        return None
    return amount


def _extract_amount(text: str) -> Decimal | None:
    """Extract the transaction amount.

    Priority:
    1. Number with a currency marker before it (₹500, INR 500, rs.500)
    2. Number with a currency code after it (500 INR)
    3. Last bare number in the text
    """
    match = _PREFIXED_AMOUNT.search(text) or _SUFFIXED_AMOUNT.search(text)
    if match is None:
        bare = list(_BARE_AMOUNT.finditer(text))
        if not bare:
            return None
        match = bare[-1]
    return _to_amount(match.group(1), match.group(2))


def _infer_country(text: str) -> Country:
    """Pick the supported country from hints. Defaults to the first one."""
    first, second = SUPPORTED_COUNTRIES
    has_first = bool(_IN_HINTS.search(text))
    has_second = bool(_SA_HINTS.search(text))
    if has_second and not has_first:
        return second
    return first


def _classify(text: str) -> Kind | None:
    """Return income/expense, or None if neither or both keyword sets match."""
    is_income = bool(_INCOME_WORDS.search(text))
    is_expense = bool(_EXPENSE_WORDS.search(text))
    if is_income == is_expense:
        return None
    return "income" if is_income else "expense"


def _build_transaction(text: str, amount: Decimal, kind: Kind) -> Transaction:
    country = _infer_country(text)
    tax_rate = DEFAULT_INCOME_TAX_RATES[country] if kind == "income" else Decimal("0")
    return Transaction(
        amount=amount,
        description=text,
        kind=kind,
        category=DEFAULT_CATEGORIES[kind],
        country=country,
        tax_rate=tax_rate,
    )


def _fallback_transaction(text: str) -> Transaction | None:
    """Verb-adjacent-number heuristics, tried when the structured pass fails."""
    for pattern in _FALLBACK_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        amount = _to_amount(match.group(2), match.group(3))
        if amount is None:
            continue
        kind = _FALLBACK_KINDS[match.group(1).lower()]
        return _build_transaction(text, amount, kind)
    return None


def parse_intent(text: str) -> ParsedIntent:
    """Parse a message into a Command, Transaction or Unrecognized.

    Args:
        text: Raw message text. Original casing is kept as the description.

    Returns:
        Parsed intent. Never raises for any string input.
    """
    stripped = text.strip()
    if not stripped:
        return Unrecognized()

    lower = stripped.lower()
    if lower.startswith("undo"):
        return Command(name="undo")
    if lower.startswith("balance"):
        return Command(name="balance")

    amount = _extract_amount(stripped)
    kind = _classify(stripped)
    if amount is not None and kind is not None:
        return _build_transaction(stripped, amount, kind)

    fallback = _fallback_transaction(stripped)
    if fallback is not None:
        return fallback

    return Unrecognized()
