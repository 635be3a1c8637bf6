"""Runtime configuration read from the environment.

Env vars:
- WHATSAPP_VERIFY_TOKEN: token Meta echoes during webhook verification
- WHATSAPP_APP_SECRET: Meta App Secret used for X-Hub-Signature-256
- WHATSAPP_TOKEN: Graph API access token for outbound messages
- WHATSAPP_PHONE_NUMBER_ID: sender phone number id for outbound messages
- WHATSAPP_GRAPH_API_VERSION: Graph API version (default: v20.0)
- APP_ENV: "local" allows unsigned webhooks when no app secret is configured
- LEDGER_BACKEND: "postgres" or "memory" (default: postgres if DATABASE_URL is set)
- DATABASE_URL: Postgres DSN for the postgres ledger backend
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

DEFAULT_GRAPH_API_VERSION = "v20.0"

_LOCAL_APP_ENV = "local"

LedgerBackend = Literal["postgres", "memory"]


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the pipeline configuration."""

    verify_token: str = ""
    app_secret: str = ""
    access_token: str = ""
    phone_number_id: str = ""
    graph_api_version: str = DEFAULT_GRAPH_API_VERSION
    app_env: str = "production"
    ledger_backend: LedgerBackend = "memory"
    database_url: str = ""

    @property
    def is_local(self) -> bool:
        """True when running in local dev mode (degraded signature checks allowed)."""
        return self.app_env == _LOCAL_APP_ENV

    @classmethod
    def from_env(cls) -> Settings:
        database_url = os.environ.get("DATABASE_URL", "")
        backend = os.environ.get("LEDGER_BACKEND") or ("postgres" if database_url else "memory")
        if backend not in ("postgres", "memory"):
            raise RuntimeError(f"Unsupported LEDGER_BACKEND: {backend}")

        return cls(
            verify_token=os.environ.get("WHATSAPP_VERIFY_TOKEN", ""),
            app_secret=os.environ.get("WHATSAPP_APP_SECRET", ""),
            access_token=os.environ.get("WHATSAPP_TOKEN", ""),
            phone_number_id=os.environ.get("WHATSAPP_PHONE_NUMBER_ID", ""),
            graph_api_version=os.environ.get(
                "WHATSAPP_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION
            ),
            app_env=os.environ.get("APP_ENV", "production"),
            ledger_backend=backend,  # type: ignore[arg-type]
            database_url=database_url,
        )
