"""Request-scoped logging context.

The HTTP middleware wraps each request in ``bind_request_context`` so every
event logged while serving it carries the same ``correlation_id``.
"""

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog


@contextmanager
def bind_request_context(
    correlation_id: Optional[str] = None,
    request_path: Optional[str] = None,
    request_method: Optional[str] = None,
    **extra_context: Any,
) -> Iterator[None]:
    """Bind ``correlation_id`` (generated when missing) and extra fields.

    Fields are unbound again when the block exits, including on error.
    """
    context: Dict[str, Any] = {"correlation_id": correlation_id or str(uuid.uuid4())}
    if request_path is not None:
        context["request_path"] = request_path
    if request_method is not None:
        context["request_method"] = request_method
    context.update(extra_context)

    structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*context)


def get_correlation_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("correlation_id")
