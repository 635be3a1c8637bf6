"""WhatsApp webhook routes - Meta Cloud API integration.

GET  /webhooks/whatsapp  - subscription verification (hub.challenge echo)
POST /webhooks/whatsapp  - inbound messages

IMPORTANT: POST always returns 200 EVENT_RECEIVED except when the
signature check fails (403). Meta retries on non-2xx responses, which
would re-deliver batches that can never succeed. Errors are logged only.

Security: sender phone and text exist only in memory; logs carry only
masked/derived metadata.
"""

import json
from typing import Any

from fastapi import APIRouter, Header, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from shopledger.config import Settings
from shopledger.domain.pipeline import WebhookPipeline
from shopledger.observability.correlation import get_correlation_id
from shopledger.observability.logging import get_logger
from shopledger.observability.redaction import safe_log_context
from shopledger.whatsapp.meta_adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    verify_signature,
)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

EVENT_RECEIVED = "EVENT_RECEIVED"


def _ack() -> Response:
    return Response(status_code=200, content=EVENT_RECEIVED)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _pipeline(request: Request) -> WebhookPipeline:
    return request.app.state.pipeline


@router.get("")
async def whatsapp_webhook_verify(
    request: Request,
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
) -> Response:
    """Meta webhook verification endpoint.

    Meta sends a GET during webhook setup to verify ownership.
    We must return hub.challenge if hub.verify_token matches.

    Returns:
        200 with hub.challenge if valid.
        403 if the token does not match (or none is configured).
        400 if any parameter is missing or mode is not "subscribe".
    """
    if hub_mode != "subscribe" or not hub_verify_token or not hub_challenge:
        logger.warning(
            "whatsapp webhook verification: bad request",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode or "missing")},
        )
        return Response(status_code=400, content="Bad Request")

    expected_token = _settings(request).verify_token
    if expected_token and hub_verify_token == expected_token:
        logger.info("whatsapp webhook verification successful")
        return Response(status_code=200, content=hub_challenge)

    logger.warning(
        "whatsapp webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                verify_configured=bool(expected_token),
            )
        },
    )
    return Response(status_code=403, content="Forbidden")


@router.post("")
async def whatsapp_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive Meta Cloud API webhook.

    Steps:
    1. Read raw body once (signature covers the exact bytes)
    2. Verify signature before any JSON parsing
    3. Parse JSON; malformed bodies are acknowledged and dropped
    4. Process messages in order in a worker thread (blocking I/O)

    Returns:
        403 on signature failure, 200 EVENT_RECEIVED otherwise.
    """
    correlation_id = get_correlation_id()
    settings = _settings(request)

    # 1. Raw body
    try:
        body_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ack()

    # 2. Signature (fail-closed unless local dev without a secret)
    if settings.app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256, settings.app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "whatsapp signature verification failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        error=str(e),
                    )
                },
            )
            return Response(status_code=403, content="Forbidden")
    elif settings.is_local:
        logger.warning(
            "WHATSAPP_APP_SECRET not configured, skipping signature verification (local mode)",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
    else:
        logger.error(
            "WHATSAPP_APP_SECRET not configured, rejecting webhook",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=403, content="Forbidden")

    # 3. JSON
    try:
        payload: Any = json.loads(body_bytes)
    except (ValueError, UnicodeDecodeError):
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ack()

    # 4. Messages
    try:
        outcomes = await run_in_threadpool(_pipeline(request).process_payload, payload)
    except InvalidPayloadError as e:
        logger.warning(
            "unexpected webhook shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return _ack()
    except Exception:
        # Still 200 (Meta requirement)
        logger.exception(
            "whatsapp webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ack()

    if outcomes:
        logger.info(
            "whatsapp webhook processed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    messages=len(outcomes),
                    failed=sum(1 for o in outcomes if o.status == "failed"),
                )
            },
        )
    return _ack()
