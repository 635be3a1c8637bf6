"""Send a signed WhatsApp text webhook to a running instance.

Usage:
    WHATSAPP_APP_SECRET=... uv run python scripts/send_test_webhook.py <phone> "<text>" [base_url]

Requires:
    - WHATSAPP_APP_SECRET matching the server (omit only if the server runs with APP_ENV=local)

This script is for local/staging E2E validation only.
"""

from __future__ import annotations

import json
import os
import sys
import time
import uuid

import requests

from shopledger.whatsapp.meta_adapter import sign_payload


def build_payload(phone: str, text: str) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "LOCAL_TEST",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "LOCAL_TEST"},
                            "messages": [
                                {
                                    "from": phone,
                                    "id": f"wamid.local.{uuid.uuid4().hex}",
                                    "timestamp": str(int(time.time())),
                                    "type": "text",
                                    "text": {"body": text},
                                }
                            ],
                        },
                        "field": "messages",
                    }
                ],
            }
        ],
    }


def main() -> None:
    if len(sys.argv) < 3:
        print('Usage: uv run python scripts/send_test_webhook.py <phone> "<text>" [base_url]')
        sys.exit(2)

    phone, text = sys.argv[1], sys.argv[2]
    base_url = sys.argv[3] if len(sys.argv) > 3 else "http://localhost:8000"

    body = json.dumps(build_payload(phone, text)).encode("utf-8")
    headers = {"Content-Type": "application/json"}

    app_secret = os.environ.get("WHATSAPP_APP_SECRET", "")
    if app_secret:
        headers["X-Hub-Signature-256"] = sign_payload(body, app_secret)
    else:
        print("WARNING: WHATSAPP_APP_SECRET not set, sending unsigned (server must run with APP_ENV=local)")

    response = requests.post(f"{base_url}/webhooks/whatsapp", data=body, headers=headers, timeout=10)
    print(f"{response.status_code} {response.text}")


if __name__ == "__main__":
    main()
