"""Correlation ID management for request tracing.

The id lives in a ContextVar; run_in_threadpool copies the context, so
pipeline logs emitted from worker threads carry the request's id.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Longer inbound ids are replaced, they end up in every log line
MAX_CORRELATION_ID_LENGTH = 128


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context ("" outside a request)."""
    return correlation_id_var.get()


@contextmanager
def bound_correlation_id(inbound: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    Reuses the caller's id when it is present and short enough, otherwise
    generates a new one. The previous value is restored on exit.
    """
    cid = inbound if inbound and len(inbound) <= MAX_CORRELATION_ID_LENGTH else None
    cid = cid or generate_correlation_id()
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)
