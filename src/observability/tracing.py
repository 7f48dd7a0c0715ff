"""Correlation identifiers for award requests and badge cycle runs.

The HTTP API takes the identifier from the ``X-Correlation-ID`` header when
the caller sends one; otherwise a fresh UUID is generated per request.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from uuid import uuid4

from src.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"
CORRELATION_ID_HEADER = "X-Correlation-ID"


def correlation_id_from_headers(headers: Mapping[str, str]) -> str | None:
    """Return a non-blank correlation id sent by the caller, if any."""

    value = headers.get(CORRELATION_ID_HEADER) or headers.get(
        CORRELATION_ID_HEADER.lower()
    )
    if value is None or not value.strip():
        return None
    return value.strip()


@contextmanager
def correlation_scope(existing_id: str | None = None) -> Iterator[str]:
    """Bind a correlation identifier to every log line within the context."""

    correlation_id = existing_id or str(uuid4())
    bind_context(**{CORRELATION_ID_KEY: correlation_id})
    try:
        yield correlation_id
    finally:
        unbind_context(CORRELATION_ID_KEY)


__all__ = [
    "CORRELATION_ID_HEADER",
    "CORRELATION_ID_KEY",
    "correlation_id_from_headers",
    "correlation_scope",
]
