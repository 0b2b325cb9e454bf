#!/usr/bin/env python
"""Seed script to provision a tenant and print an administrator token.

Creates the tenant with its default review stages (QC, R1..R4) if it does not
exist yet, then prints a short-lived ADMIN bearer token for it so the stage
configuration can be adjusted through the API.

Usage:
    python backend/scripts/seed_tenant.py

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    JWT_SECRET: Must match the API's JWT_SECRET
    TENANT_NAME: Display name (default: Demo Tenant)
    TENANT_SLUG: URL-safe identifier (default: demo)
    ADMIN_USER_ID: Principal the token is issued for (default: random UUID)
    PROJECT_NAME: Optional project to create in the tenant
"""

import os
import sys
from pathlib import Path
from uuid import UUID, uuid4

# Add backend/src to Python path
backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from reviewflow.auth.jwt import create_access_token
from reviewflow.auth.roles import UserRole
from reviewflow.database import get_db_session
from reviewflow.tenancy.service import create_project, provision_tenant
from reviewflow.workflow.stages import list_stages


def main():
    """Provision the tenant and print an admin token."""
    tenant_name = os.getenv("TENANT_NAME", "Demo Tenant")
    tenant_slug = os.getenv("TENANT_SLUG", "demo")
    project_name = os.getenv("PROJECT_NAME")

    admin_id_str = os.getenv("ADMIN_USER_ID")
    try:
        admin_id = UUID(admin_id_str) if admin_id_str else uuid4()
    except ValueError:
        print(f"ERROR: Invalid ADMIN_USER_ID format: {admin_id_str}")
        print("ADMIN_USER_ID must be a valid UUID")
        sys.exit(1)

    try:
        with get_db_session() as session:
            tenant = provision_tenant(session, name=tenant_name, slug=tenant_slug, actor_id=admin_id)
            stages = list_stages(session, tenant.id)

            project = None
            if project_name:
                project = create_project(session, tenant.id, project_name)

            print("SUCCESS: Tenant ready")
            print(f"  ID:     {tenant.id}")
            print(f"  Slug:   {tenant.slug}")
            print(f"  Stages: {', '.join(stage.name for stage in stages)}")
            if project:
                print(f"  Project: {project.id} ({project.name})")

            token = create_access_token(admin_id, tenant.id, UserRole.ADMIN.value)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"ERROR: Failed to provision tenant: {e}")
        sys.exit(1)

    print(f"  Admin:  {admin_id}")
    print()
    print("Bearer token (valid 60 minutes):")
    print(token)


if __name__ == "__main__":
    main()
