"""Per-message webhook processing.

Runs each inbound message through dedup, rate limiting, a length check,
intent parsing, dispatch and reply delivery. The dispatch and the cached
reply are committed together by LedgerStore.apply_once. Every message
yields a MessageOutcome; a failure in one message never stops the others.

Security: text and sender are PII. Logs carry only the masked sender,
message id prefix and text length.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from shopledger.domain.commands import CommandDispatcher
from shopledger.domain.ledger import LedgerEntries, LedgerStore
from shopledger.domain.parsing import parse_intent
from shopledger.domain.rate_limit import RateLimiter
from shopledger.observability.logging import get_logger
from shopledger.observability.redaction import mask_phone, safe_log_context
from shopledger.whatsapp.meta_adapter import (
    InvalidPayloadError,
    NotTextMessageError,
    extract_messages,
    has_statuses,
    normalize_message,
)
from shopledger.whatsapp.models import InboundMessage
from shopledger.whatsapp.templates import render, retry_seconds

logger = get_logger(__name__)

# Longer texts get a "too long" reply and never reach the parser
MAX_TEXT_LENGTH = 1000

OutcomeStatus = Literal["replied", "skipped", "rate_limited", "duplicate", "failed"]


class ReplySender(Protocol):
    def send_text(self, recipient_id: str, body: str) -> bool: ...


@dataclass(frozen=True)
class MessageOutcome:
    """Result of processing one message of a webhook batch."""

    message_id: str
    status: OutcomeStatus
    reply: str | None = None
    delivered: bool = False
    error: str | None = None


def _id_prefix(message_id: str) -> str:
    return message_id[:12] if len(message_id) >= 12 else message_id


class WebhookPipeline:
    """Processes the messages of a Meta webhook payload in order."""

    def __init__(
        self,
        ledger: LedgerStore,
        sender: ReplySender,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._ledger = ledger
        self._sender = sender
        self._rate_limiter = rate_limiter or RateLimiter(ledger)

    def process_payload(self, payload: Any) -> list[MessageOutcome]:
        """Process every message of a parsed webhook body.

        Status-only payloads (delivery/read receipts) and bodies without
        messages produce no outcomes and no side effects.

        Raises:
            InvalidPayloadError: If the body is not a webhook envelope.
        """
        if has_statuses(payload):
            logger.debug("status update ignored")
            return []

        outcomes: list[MessageOutcome] = []
        for index, raw in enumerate(extract_messages(payload)):
            try:
                msg = normalize_message(raw)
            except NotTextMessageError:
                outcomes.append(MessageOutcome(_raw_id(raw, index), "skipped"))
                continue
            except InvalidPayloadError as e:
                logger.warning(
                    "skipping malformed message",
                    extra={"extra_fields": safe_log_context(index=index, error=str(e))},
                )
                outcomes.append(MessageOutcome(_raw_id(raw, index), "skipped", error=str(e)))
                continue

            outcomes.append(self.process_message(msg))

        return outcomes

    def process_message(self, msg: InboundMessage) -> MessageOutcome:
        """Process one message. Never raises; failures become a 'failed' outcome."""
        log_ctx = safe_log_context(
            sender=mask_phone(msg.sender_id),
            message_id_prefix=_id_prefix(msg.message_id),
            text_len=len(msg.text),
        )

        try:
            cached = self._ledger.get_processed_reply(msg.message_id)
            if cached is not None:
                logger.info("duplicate message, resending reply", extra={"extra_fields": log_ctx})
                return self._deliver(msg, "duplicate", cached)

            decision = self._rate_limiter.check_and_consume(msg.sender_id)
            if decision.blocked:
                logger.warning(
                    "sender rate limited",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, retry_after_ms=decision.retry_after_ms
                        )
                    },
                )
                reply = render("rate_limited", {"seconds": retry_seconds(decision.retry_after_ms)})
                return self._deliver(msg, "rate_limited", reply)

            if len(msg.text) > MAX_TEXT_LENGTH:
                reply = render("too_long", {"max_length": MAX_TEXT_LENGTH})
                return self._deliver(msg, "replied", reply)

            intent = parse_intent(msg.text)

            def handle(entries: LedgerEntries) -> str:
                return CommandDispatcher(entries).dispatch(msg.sender_id, msg.message_id, intent)

            reply, applied = self._ledger.apply_once(msg.message_id, msg.sender_id, handle)
            if not applied:
                # Concurrent delivery of the same message committed first
                logger.info("duplicate message, resending reply", extra={"extra_fields": log_ctx})
                return self._deliver(msg, "duplicate", reply)

            logger.info(
                "message processed",
                extra={"extra_fields": safe_log_context(**log_ctx, intent=type(intent).__name__)},
            )
            return self._deliver(msg, "replied", reply)

        except Exception as e:
            logger.exception("message processing failed", extra={"extra_fields": log_ctx})
            reply = render("error")
            delivered = self._sender.send_text(msg.sender_id, reply)
            return MessageOutcome(
                msg.message_id,
                "failed",
                reply=reply,
                delivered=delivered,
                error=type(e).__name__,
            )

    def _deliver(self, msg: InboundMessage, status: OutcomeStatus, reply: str) -> MessageOutcome:
        delivered = self._sender.send_text(msg.sender_id, reply)
        return MessageOutcome(msg.message_id, status, reply=reply, delivered=delivered)


def _raw_id(raw: Any, index: int) -> str:
    if isinstance(raw, dict) and isinstance(raw.get("id"), str):
        return raw["id"]
    return f"#{index}"
