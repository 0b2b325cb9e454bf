"""Tenant provisioning.

Creating a tenant installs its default review stages in the same
transaction, so a tenant is never visible without a workflow.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..models.project import Project
from ..models.tenant import Tenant
from ..workflow.stages import provision_default_stages

logger = logging.getLogger(__name__)


def provision_tenant(
    db: Session,
    name: str,
    slug: str,
    actor_id: Optional[UUID] = None,
) -> Tenant:
    """Create a tenant with the default stage set, or return the existing one.

    Idempotent on slug.

    Raises:
        ValueError: If the slug is malformed
    """
    tenant = db.query(Tenant).filter(Tenant.slug == slug).first()
    if tenant:
        return tenant

    tenant = Tenant(name=name, slug=slug, settings_json={})
    db.add(tenant)
    db.flush()

    provision_default_stages(db, tenant.id, actor_id=actor_id)
    log_audit_event(
        db=db,
        tenant_id=tenant.id,
        action="TENANT_PROVISIONED",
        actor_id=actor_id,
        entity_type="tenant",
        entity_id=tenant.id,
        metadata={"name": name, "slug": slug},
    )
    db.commit()
    db.refresh(tenant)
    logger.info(f"Provisioned tenant {slug} ({tenant.id})")
    return tenant


def create_project(
    db: Session,
    tenant_id: UUID,
    name: str,
    description: Optional[str] = None,
) -> Project:
    """Create a project record so files can be filed into it.

    Project management itself lives outside this service; this exists for
    provisioning scripts and tests.
    """
    project = Project(tenant_id=tenant_id, name=name, description=description)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project
