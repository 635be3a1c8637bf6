"""WhatsApp reply templates.

Templates contain static text with placeholders; rendering happens only
in memory at reply time.
"""

import math
from decimal import Decimal
from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    "recorded": {
        "text": "✅ Recorded: {kind} of {amount} ({category})",
        "allowed_params": ["kind", "amount", "category"],
    },
    "undone": {
        "text": "↩️ Undone: {kind} of {amount} ({description})",
        "allowed_params": ["kind", "amount", "description"],
    },
    "nothing_to_undo": {
        "text": "Nothing to undo.",
        "allowed_params": [],
    },
    "balance": {
        "text": (
            "📊 Balance\n"
            "Income: {income}\n"
            "Expenses: {expense}\n"
            "Tax: {tax}\n"
            "Net: {net}"
        ),
        "allowed_params": ["income", "expense", "tax", "net"],
    },
    "usage_hint": {
        "text": (
            "I couldn't understand that. Try:\n"
            "- Sold 5 items for ₹500\n"
            "- Bought supplies ₹200\n"
            "Commands: undo, balance"
        ),
        "allowed_params": [],
    },
    "rate_limited": {
        "text": "⏳ You're sending messages too fast. Please wait {seconds}s and try again.",
        "allowed_params": ["seconds"],
    },
    "too_long": {
        "text": "✋ That message is too long. Please keep it under {max_length} characters.",
        "allowed_params": ["max_length"],
    },
    "error": {
        "text": "⚠️ Sorry, something went wrong. Please try again.",
        "allowed_params": [],
    },
}


def format_amount(value: Decimal) -> str:
    """Render money without trailing zero cents: 500.00 -> 500, 2500.50 -> 2500.5."""
    quantized = value.quantize(Decimal("0.01"))
    text = format(quantized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def retry_seconds(retry_after_ms: int) -> int:
    """Whole seconds to wait, rounded up, at least 1."""
    return max(1, math.ceil(retry_after_ms / 1000))


def render(template_key: str, params: dict[str, Any] | None = None) -> str:
    """Render a template with validated params.

    Args:
        template_key: Key in TEMPLATES.
        params: Values for the template placeholders.

    Returns:
        Rendered text.

    Raises:
        ValueError: If template_key is unknown or params contain keys the
            template does not allow.
    """
    template = TEMPLATES.get(template_key)
    if template is None:
        raise ValueError(f"unknown template: {template_key}")

    params = params or {}
    unexpected = set(params) - set(template["allowed_params"])
    if unexpected:
        raise ValueError(f"unexpected params for {template_key}: {sorted(unexpected)}")

    return template["text"].format(**params)
