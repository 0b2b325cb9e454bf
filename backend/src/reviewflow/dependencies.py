"""Global FastAPI dependencies for tenant isolation, storage and lookups.

- get_storage: the object storage adapter installed on the application
- TenantQuery: tenant-scoped query helpers that turn cross-tenant ids into NotFound
"""

from typing import Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Query, Session

from .domain.files.ports.object_storage_port import ObjectStoragePort
from .errors import NotFound, StorageUnavailable


def get_storage(request: Request) -> ObjectStoragePort:
    """Object storage adapter constructed at startup (see main.create_app).

    Tests install a fake by passing it to create_app or by overriding this
    dependency.
    """
    storage: Optional[ObjectStoragePort] = getattr(request.app.state, "storage", None)
    if storage is None:
        raise StorageUnavailable("Object storage is not configured")
    return storage


class TenantQuery:
    """Utility class for building tenant-scoped queries.

    Example:
        file = TenantQuery.get_or_404(db, File, file_id, tenant_id)
    """

    @staticmethod
    def scoped_query(session: Session, model, tenant_id: UUID) -> Query:
        """Create a query filtered by tenant_id.

        Raises:
            AttributeError: If model doesn't have tenant_id column
        """
        if not hasattr(model, 'tenant_id'):
            raise AttributeError(f"Model {model.__name__} does not have tenant_id column")

        return session.query(model).filter(model.tenant_id == tenant_id)

    @staticmethod
    def get_or_404(session: Session, model, record_id: UUID, tenant_id: UUID):
        """Get a record by ID with tenant scoping, or raise NotFound.

        Records that don't exist and records owned by another tenant produce
        the same error, so ids cannot be enumerated across tenants.
        """
        record = TenantQuery.scoped_query(session, model, tenant_id).filter(
            model.id == record_id
        ).first()

        if not record:
            raise NotFound(f"{model.__name__} not found")

        return record
