"""Request ID management for request correlation.

Provides context-aware request ID generation and propagation across async operations.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request_id (async-safe)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID.

    Returns:
        str: Random UUID v4 rendered as a string
    """
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get the request ID bound to the current context.

    Returns:
        str: The bound request ID, or "no-request-id" outside a request
    """
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    """Bind a request ID to the current context.

    Args:
        request_id: ID to attach to log records emitted from this context
    """
    request_id_var.set(request_id)
