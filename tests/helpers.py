"""Test helpers: Meta payload builders, signing, fake reply sender."""

from __future__ import annotations

import json

from shopledger.whatsapp.meta_adapter import sign_payload

TEST_APP_SECRET = "test-whatsapp-app-secret"
TEST_VERIFY_TOKEN = "test-verify-token"
TEST_PHONE = "919876543210"


def text_message(
    body: str,
    *,
    message_id: str = "wamid.TEST001",
    sender: str = TEST_PHONE,
) -> dict:
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1704067200",
        "type": "text",
        "text": {"body": body},
    }


def make_payload(*messages: dict, statuses: list[dict] | None = None) -> dict:
    """Build a Meta webhook envelope around messages (and/or statuses)."""
    value: dict = {
        "messaging_product": "whatsapp",
        "metadata": {
            "display_phone_number": "15550001111",
            "phone_number_id": "123456789",
        },
    }
    if messages:
        value["messages"] = list(messages)
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WHATSAPP_BUSINESS_ACCOUNT_ID",
                "changes": [{"value": value, "field": "messages"}],
            }
        ],
    }


def signed_post(client, payload: dict | bytes, secret: str = TEST_APP_SECRET):
    """POST /webhooks/whatsapp with a valid X-Hub-Signature-256 header."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": sign_payload(body, secret),
    }
    return client.post("/webhooks/whatsapp", content=body, headers=headers)


class RecordingSender:
    """ReplySender fake that records every send_text call."""

    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[tuple[str, str]] = []

    def send_text(self, recipient_id: str, body: str) -> bool:
        self.sent.append((recipient_id, body))
        return self.result

    @property
    def bodies(self) -> list[str]:
        return [body for _, body in self.sent]
