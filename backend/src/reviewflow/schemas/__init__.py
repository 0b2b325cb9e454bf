"""Pydantic Schemas shared across the ReviewFlow API"""

from .common import CamelModel, ErrorResponse, FileRecord, TransitionRecord, error_responses

__all__ = [
    "CamelModel",
    "ErrorResponse",
    "FileRecord",
    "TransitionRecord",
    "error_responses",
]
