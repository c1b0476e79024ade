"""Correlation ID management for request and message tracing."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

# Context variable for correlation ID - accessible across async calls and worker threads
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Used by feed consumers and scheduled jobs, which have no inbound
    request header to carry one.

    Args:
        cid: Correlation ID to bind. A fresh one is generated if None.

    Yields:
        The bound correlation ID.
    """
    bound = cid or generate_correlation_id()
    token = set_correlation_id(bound)
    try:
        yield bound
    finally:
        reset_correlation_id(token)
