"""Pytest fixtures for the ReviewFlow backend.

Provides reusable test fixtures for:
- Database session on an in-memory SQLite database (fresh schema per test)
- Tenants provisioned with the default review stages
- An in-memory object store implementing ObjectStoragePort
- Test clients authenticated as each role

Usage:
    def test_reviewer_can_approve(reviewer_client, confirmed_file):
        response = reviewer_client.post(f"/api/v1/files/{confirmed_file.id}/transition", ...)
        assert response.status_code == 200
"""

import os

# Set environment variables BEFORE any reviewflow import: database.py builds
# its engine from settings at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-256-bits-minimum-length-required-for-security")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from typing import Dict, Generator, List, Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from reviewflow.auth.jwt import create_access_token
from reviewflow.auth.roles import UserRole
from reviewflow.database import get_db
from reviewflow.domain.files.ports.object_storage_port import (
    ObjectMetadata,
    ObjectStoragePort,
    WriteGrant,
)
from reviewflow.errors import StorageUnavailable
from reviewflow.models import Base, File, Project, Tenant
from reviewflow.tenancy.service import create_project, provision_tenant
from reviewflow.uploads import broker


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeObjectStorage(ObjectStoragePort):
    """In-memory object store.

    Grants are fake URLs; tests "perform" the client PUT with put_bytes().
    Set fail_with to make every call raise StorageUnavailable. put_errors maps a
    key suffix to an arbitrary exception raised by put_object.
    """

    def __init__(self):
        self.objects: Dict[str, ObjectMetadata] = {}
        self.data: Dict[str, bytes] = {}
        self.grants: List[WriteGrant] = []
        self.fail_with: Optional[str] = None
        self.fail_keys: set = set()
        self.put_errors: Dict[str, Exception] = {}

    def _check(self, storage_key: Optional[str] = None) -> None:
        if self.fail_with:
            raise StorageUnavailable(self.fail_with)
        if storage_key is not None and any(storage_key.endswith(k) for k in self.fail_keys):
            raise StorageUnavailable(f"Failed to upload file: {storage_key}")

    def put_bytes(self, storage_key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """What the client's PUT to the presigned URL would do."""
        self.data[storage_key] = data
        self.objects[storage_key] = ObjectMetadata(
            storage_key=storage_key,
            size_bytes=len(data),
            content_type=content_type,
            etag=f"etag-{len(data)}",
            last_modified=datetime.now(timezone.utc),
        )

    async def issue_write_grant(self, storage_key, content_type, expires_in_seconds=900):
        self._check()
        grant = WriteGrant(
            url=f"https://store.test/bucket/{storage_key}?signature=put",
            storage_key=storage_key,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds),
            headers={"Content-Type": content_type},
        )
        self.grants.append(grant)
        return grant

    async def issue_read_grant(self, storage_key, expires_in_seconds=3600):
        self._check()
        return f"https://store.test/bucket/{storage_key}?signature=get&expires={expires_in_seconds}"

    async def head_object(self, storage_key):
        self._check()
        return self.objects.get(storage_key)

    async def list_objects(self, prefix, max_keys=1000):
        self._check()
        return [meta for key, meta in sorted(self.objects.items()) if key.startswith(prefix)][:max_keys]

    async def put_object(self, storage_key, data, content_type):
        self._check(storage_key)
        for suffix, exc in self.put_errors.items():
            if storage_key.endswith(suffix):
                raise exc
        self.put_bytes(storage_key, data, content_type)
        return self.objects[storage_key]

    async def verify_bucket_exists(self):
        self._check()
        return True


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def tenant(db_session: Session) -> Tenant:
    """Tenant with the default stages QC, R1..R4."""
    return provision_tenant(db_session, name="Acme Studio", slug="acme")


@pytest.fixture
def other_tenant(db_session: Session) -> Tenant:
    return provision_tenant(db_session, name="Globex", slug="globex")


@pytest.fixture
def project(db_session: Session, tenant: Tenant) -> Project:
    return create_project(db_session, tenant.id, "Spring Campaign")


@pytest.fixture
def reviewer_id() -> UUID:
    return uuid4()


def make_confirmed_file(
    db: Session,
    storage: FakeObjectStorage,
    tenant_id: UUID,
    filename: str = "brief.pdf",
    content: bytes = b"%PDF-1.7 review me",
    project_id: Optional[UUID] = None,
) -> File:
    """Run the presigned flow end to end: request, client PUT, confirm."""
    import asyncio

    async def flow() -> File:
        ticket = await broker.request_upload(
            db, storage, tenant_id, uuid4(), filename, "application/pdf", len(content),
            project_id=project_id,
        )
        storage.put_bytes(ticket.grant.storage_key, content, "application/pdf")
        return await broker.confirm_upload(db, storage, tenant_id, ticket.file.id)

    return asyncio.run(flow())


@pytest.fixture
def confirmed_file(db_session: Session, storage: FakeObjectStorage, tenant: Tenant) -> File:
    """A file of `tenant` sitting in stage UPLOADED."""
    return make_confirmed_file(db_session, storage, tenant.id)


def auth_headers(tenant_id: UUID, role: UserRole, user_id: Optional[UUID] = None) -> Dict[str, str]:
    token = create_access_token(user_id=user_id or uuid4(), tenant_id=tenant_id, role=role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def app(db_session: Session, storage: FakeObjectStorage):
    """FastAPI application wired to the test session and the fake store."""
    from reviewflow.main import create_app

    application = create_app(storage=storage)

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture(scope="function")
def client(app) -> TestClient:
    """Unauthenticated test client."""
    return TestClient(app)


def _client_for(app, tenant: Tenant, role: UserRole) -> TestClient:
    client = TestClient(app)
    client.headers.update(auth_headers(tenant.id, role))
    return client


@pytest.fixture(scope="function")
def admin_client(app, tenant: Tenant) -> TestClient:
    return _client_for(app, tenant, UserRole.ADMIN)


@pytest.fixture(scope="function")
def reviewer_client(app, tenant: Tenant) -> TestClient:
    return _client_for(app, tenant, UserRole.REVIEWER)


@pytest.fixture(scope="function")
def contributor_client(app, tenant: Tenant) -> TestClient:
    return _client_for(app, tenant, UserRole.CONTRIBUTOR)


@pytest.fixture(scope="function")
def viewer_client(app, tenant: Tenant) -> TestClient:
    return _client_for(app, tenant, UserRole.VIEWER)


@pytest.fixture(scope="function")
def other_tenant_client(app, other_tenant: Tenant) -> TestClient:
    """ADMIN of a different tenant: sees nothing of `tenant`."""
    return _client_for(app, other_tenant, UserRole.ADMIN)
