"""Schemas shared by the upload and workflow APIs.

Wire format is camelCase (uploadUrl, fileRecord, newStage); Python code uses
snake_case field names and populates models by name.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from ..models.file import File
from ..models.stage_transition import StageTransition


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class FileRecord(CamelModel):
    """Public representation of a File"""
    id: UUID
    tenant_id: UUID
    project_id: Optional[UUID] = None
    original_name: str
    mime_type: str
    size_bytes: int
    storage_key: str
    upload_status: str
    current_stage: Optional[str] = None
    revision_count: int
    version: int = Field(..., description="Optimistic concurrency version; send back as expectedVersion")
    assigned_to: Optional[UUID] = None
    uploaded_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    @classmethod
    def from_file(cls, file: File) -> "FileRecord":
        return cls(
            id=file.id,
            tenant_id=file.tenant_id,
            project_id=file.project_id,
            original_name=file.original_name,
            mime_type=file.mime_type,
            size_bytes=file.size_bytes,
            storage_key=file.storage_key,
            upload_status=file.upload_status,
            current_stage=file.current_stage,
            revision_count=file.revision_count,
            version=file.version,
            assigned_to=file.assigned_to,
            uploaded_by=file.uploaded_by,
            created_at=file.created_at,
            updated_at=file.updated_at,
            confirmed_at=file.confirmed_at,
        )


class TransitionRecord(CamelModel):
    """One ledger row"""
    id: int
    file_id: UUID
    from_stage: Optional[str] = None
    to_stage: str
    action: str
    actor_id: Optional[UUID] = None
    comment: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_transition(cls, transition: StageTransition) -> "TransitionRecord":
        return cls(
            id=transition.id,
            file_id=transition.file_id,
            from_stage=transition.from_stage,
            to_stage=transition.to_stage,
            action=transition.action,
            actor_id=transition.actor_id,
            comment=transition.comment,
            created_at=transition.created_at,
        )


class ErrorResponse(BaseModel):
    """Body of every error produced by the ReviewFlowError handler"""
    error: str = Field(..., description="Stable error code, e.g. InvalidTransition")
    message: str = Field(..., description="Human-readable message")
    details: Optional[Dict[str, Any]] = Field(None, description="Structured context (reasons, stages)")


def error_responses(*status_codes: int) -> Dict[int, Dict[str, Any]]:
    """OpenAPI `responses=` entries documenting ErrorResponse bodies."""
    return {code: {"model": ErrorResponse} for code in status_codes}
