"""Meta Cloud API adapter - verify and normalize webhook payloads.

Handles WhatsApp Business API webhook payloads, including signature
verification and per-message normalization.

Meta payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "changes": [{
      "value": {
        "metadata": {"phone_number_id": "..."},
        "messages": [{"from": "PHONE", "id": "MSG_ID", "type": "text", "text": {"body": "..."}}],
        "statuses": [{"id": "MSG_ID", "status": "delivered"}]
      },
      "field": "messages"
    }]
  }]
}
"""

import hashlib
import hmac
from typing import Any

from pydantic import ValidationError

from .models import InboundMessage, MetaMessage

SIGNATURE_PREFIX = "sha256="


class InvalidPayloadError(Exception):
    """Raised when a Meta payload or message has an invalid shape."""

    pass


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""

    pass


class NotTextMessageError(InvalidPayloadError):
    """Raised for well-formed messages that are not text (image, audio, ...)."""

    pass


def compute_signature(payload_bytes: bytes, app_secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body keyed with the app secret."""
    return hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign_payload(payload_bytes: bytes, app_secret: str) -> str:
    """Build an X-Hub-Signature-256 header value for a body."""
    return f"{SIGNATURE_PREFIX}{compute_signature(payload_bytes, app_secret)}"


def verify_signature(payload_bytes: bytes, signature_header: str | None, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format. The body must be
    the exact bytes received, before any JSON parsing.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[len(SIGNATURE_PREFIX):]
    computed_sig = compute_signature(payload_bytes, app_secret)

    # Constant time: length check, then every byte compared
    if not hmac.compare_digest(computed_sig.encode(), expected_sig.encode()):
        raise SignatureVerificationError("signature mismatch")


def is_valid_signature(payload_bytes: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Boolean form of verify_signature."""
    try:
        verify_signature(payload_bytes, signature_header, app_secret)
    except SignatureVerificationError:
        return False
    return True


def _first_value(payload: Any) -> dict[str, Any]:
    """Return entry[0].changes[0].value, raising InvalidPayloadError on bad shape."""
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload is not an object")

    entry = payload.get("entry")
    if not isinstance(entry, list):
        raise InvalidPayloadError("missing entry list")
    if not entry or not isinstance(entry[0], dict):
        return {}

    changes = entry[0].get("changes")
    if not isinstance(changes, list) or not changes or not isinstance(changes[0], dict):
        return {}

    value = changes[0].get("value")
    return value if isinstance(value, dict) else {}


def has_statuses(payload: Any) -> bool:
    """True for delivery/read receipt payloads (value.statuses non-empty)."""
    try:
        statuses = _first_value(payload).get("statuses")
    except InvalidPayloadError:
        return False
    return isinstance(statuses, list) and len(statuses) > 0


def extract_messages(payload: Any) -> list[Any]:
    """Return the raw value.messages list (possibly empty).

    Raises:
        InvalidPayloadError: If the payload is not an envelope with an entry list.
    """
    messages = _first_value(payload).get("messages")
    return messages if isinstance(messages, list) else []


def normalize_message(raw: Any) -> InboundMessage:
    """Normalize one raw Meta message into an InboundMessage.

    Args:
        raw: Element of value.messages[].

    Returns:
        InboundMessage with sender_id and text (PII, memory only).

    Raises:
        NotTextMessageError: If the message type is not "text".
        InvalidPayloadError: If id, sender or text body is missing.
    """
    if not isinstance(raw, dict):
        raise InvalidPayloadError("message is not an object")

    kind = raw.get("type")
    if kind != "text":
        raise NotTextMessageError(f"unsupported message type: {kind}")

    try:
        message = MetaMessage.model_validate(raw)
    except ValidationError as e:
        raise InvalidPayloadError(f"invalid message: {e.error_count()} error(s)") from e

    text = message.text.body if message.text else ""
    if not message.id or not message.from_ or not text:
        raise InvalidPayloadError("missing message id, sender or text")

    return InboundMessage(
        message_id=message.id,
        sender_id=message.from_,
        text=text,
        kind=message.type,
    )
