"""Outbound WhatsApp messaging via Meta Cloud API.

Security: NEVER log the recipient or text. Only the masked recipient
(last 4 digits) and text length.
"""

from __future__ import annotations

import time
from typing import Callable

import requests

from shopledger.config import Settings
from shopledger.observability.logging import get_logger
from shopledger.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"

# Max characters accepted by the text message API
MAX_BODY_LENGTH = 4000

# Per-attempt timeout (seconds)
HTTP_TIMEOUT = 7

# Retry config: attempts in total, exponential backoff capped
MAX_ATTEMPTS = 3
BASE_DELAY = 0.5
MAX_DELAY = 8.0


def backoff_delay(attempt: int, retry_after: float | None = None) -> float:
    """Delay before the next attempt.

    Args:
        attempt: 1-based number of the attempt that just failed.
        retry_after: Seconds from a Retry-After header; lower-bounds the delay.

    Returns:
        BASE_DELAY * 2^(attempt-1), raised to retry_after, capped at MAX_DELAY.
    """
    delay = BASE_DELAY * (2 ** (attempt - 1))
    if retry_after is not None:
        delay = max(delay, retry_after)
    return min(delay, MAX_DELAY)


def _parse_retry_after(response: requests.Response) -> float | None:
    """Retry-After in seconds. HTTP-date values are ignored."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


class MetaSender:
    """Sends text replies through the Graph API /{phone_number_id}/messages endpoint."""

    def __init__(
        self,
        settings: Settings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def url(self) -> str:
        return (
            f"{GRAPH_API_BASE_URL}/{self._settings.graph_api_version}/"
            f"{self._settings.phone_number_id}/messages"
        )

    def send_text(self, recipient_id: str, body: str) -> bool:
        """Send a text message. Never raises.

        Args:
            recipient_id: Recipient phone number. NEVER logged unmasked.
            body: Message text. NEVER logged. Truncated to MAX_BODY_LENGTH.

        Returns:
            True if the provider accepted the message, False otherwise
            (skipped, terminal 4xx, or retry budget exhausted).
        """
        to = (recipient_id or "").strip()
        text = (body or "")[:MAX_BODY_LENGTH].strip()

        log_ctx = safe_log_context(to=mask_phone(to), text_len=len(text), provider="meta")

        if not to or not text:
            logger.warning(
                "outbound send skipped: empty recipient or body",
                extra={"extra_fields": log_ctx},
            )
            return False

        if not self._settings.access_token or not self._settings.phone_number_id:
            logger.warning(
                "outbound send skipped: missing WHATSAPP_TOKEN or WHATSAPP_PHONE_NUMBER_ID",
                extra={"extra_fields": log_ctx},
            )
            return False

        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._settings.access_token}",
        }

        for attempt in range(1, MAX_ATTEMPTS + 1):
            retry_after: float | None = None
            try:
                response = self._session.post(
                    self.url, json=payload, headers=headers, timeout=HTTP_TIMEOUT
                )
            except requests.RequestException as e:
                # Timeouts and connection failures are retryable
                error = type(e).__name__
            else:
                if response.ok:
                    logger.info(
                        "outbound message sent",
                        extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
                    )
                    return True

                error = f"http_{response.status_code}"
                if not _is_retryable_status(response.status_code):
                    logger.error(
                        "outbound send rejected",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, status_code=response.status_code
                            )
                        },
                    )
                    return False
                retry_after = _parse_retry_after(response)

            if attempt == MAX_ATTEMPTS:
                logger.error(
                    "outbound send failed, retries exhausted",
                    extra={
                        "extra_fields": safe_log_context(**log_ctx, attempt=attempt, error=error)
                    },
                )
                return False

            delay = backoff_delay(attempt, retry_after)
            logger.warning(
                "outbound send failed, retrying",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, attempt=attempt, error=error, delay_s=delay
                    )
                },
            )
            self._sleep(delay)

        return False
