"""FastAPI application factory.

Collaborators (settings, ledger, reply sender) are built here once per app
and attached to app.state; routes read them from the request.
"""

from fastapi import FastAPI, Request, Response

from shopledger.config import Settings
from shopledger.domain.ledger import InMemoryLedger, LedgerStore
from shopledger.domain.pipeline import ReplySender, WebhookPipeline
from shopledger.observability.correlation import CORRELATION_ID_HEADER, bound_correlation_id
from shopledger.observability.logging import get_logger
from shopledger.observability.redaction import safe_log_context
from shopledger.whatsapp.meta_sender import MetaSender

from .routes import webhooks_whatsapp

logger = get_logger(__name__)


def build_ledger(settings: Settings) -> LedgerStore:
    """Create the ledger backend selected by LEDGER_BACKEND."""
    if settings.ledger_backend == "postgres":
        # Imported lazily so the memory backend works without libpq
        from shopledger.infra.postgres_ledger import PostgresLedger

        return PostgresLedger(settings.database_url or None)
    return InMemoryLedger()


def create_app(
    settings: Settings | None = None,
    *,
    ledger: LedgerStore | None = None,
    sender: ReplySender | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        settings: Explicit settings. If None, read from the environment.
        ledger: Ledger backend override (tests, embedding).
        sender: Reply sender override (tests, embedding).

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = Settings.from_env()

    app = FastAPI(
        title="Shopledger",
        docs_url=None,
        redoc_url=None,
    )

    ledger = ledger if ledger is not None else build_ledger(settings)
    sender = sender if sender is not None else MetaSender(settings)

    app.state.settings = settings
    app.state.ledger = ledger
    app.state.pipeline = WebhookPipeline(ledger=ledger, sender=sender)

    logger.info(
        "app created",
        extra={
            "extra_fields": safe_log_context(
                app_env=settings.app_env,
                ledger_backend=type(ledger).__name__,
                verifies_webhooks=bool(settings.app_secret),
            )
        },
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with bound_correlation_id(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    @app.get("/health")
    def health() -> dict:
        """Liveness check. Does not touch the ledger."""
        return {"status": "ok"}

    app.include_router(webhooks_whatsapp.router)

    return app
