"""Observability module for ReviewFlow.

Provides structured logging, metrics, request correlation and health checks.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    upload_size_bytes,
    uploads_total,
    validation_warnings_total,
    workflow_busy_total,
    workflow_transition_duration_seconds,
    workflow_transitions_total,
)
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id
from .health import HealthStatus, ComponentHealth
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "uploads_total",
    "upload_size_bytes",
    "validation_warnings_total",
    "workflow_transitions_total",
    "workflow_busy_total",
    "workflow_transition_duration_seconds",
    # Request ID
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "RequestIDMiddleware",
]
