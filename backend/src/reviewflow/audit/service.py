"""Audit logging service.

Stage movements are recorded in the transition ledger; everything else an
operator may need to reconstruct goes through log_audit_event.

Audit Events:
- UPLOAD_REQUESTED, UPLOAD_CONFIRMED
- FILE_ATTACHED_TO_PROJECT, FILE_REASSIGNED
- STAGE_CREATED, STAGE_UPDATED, STAGES_PROVISIONED
- TENANT_PROVISIONED
"""

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    tenant_id: UUID,
    action: str,
    actor_id: Optional[UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """Create an audit log entry in the caller's transaction.

    Example:
        log_audit_event(
            db=db,
            tenant_id=principal.tenant_id,
            action="STAGE_CREATED",
            actor_id=principal.user_id,
            entity_type="workflow_stage",
            entity_id=stage.id,
            metadata={"name": stage.name, "order_index": stage.order_index},
        )
    """
    audit_entry = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry

