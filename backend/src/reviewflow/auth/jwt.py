"""JWT token validation

Tokens are issued by the identity service in front of ReviewFlow; the core
only verifies them. create_access_token exists for tests and operator tooling
(scripts/seed_tenant.py prints a token for the seeded administrator).

Claims read:
- sub: principal (user) ID as UUID string
- tenant_id: tenant the principal acts in, as UUID string
- role: ADMIN | REVIEWER | CONTRIBUTOR | VIEWER
- exp: expiry (enforced by PyJWT)

Example Token Payload:
{
  "sub": "550e8400-e29b-41d4-a716-446655440000",
  "tenant_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
  "role": "REVIEWER",
  "iat": 1704368400,
  "exp": 1704372000
}
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from uuid import UUID

import jwt

from ..config import get_settings


def create_access_token(
    user_id: UUID,
    tenant_id: UUID,
    role: str,
    expires_in_minutes: int = 60,
) -> str:
    """Create a signed access token (tests and operator tooling only)."""
    settings = get_settings()
    now = datetime.now(timezone.utc)

    payload = {
        'sub': str(user_id),
        'tenant_id': str(tenant_id),
        'role': role,
        'iat': int(now.timestamp()),
        'exp': int((now + timedelta(minutes=expires_in_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or tampered
    """
    settings = get_settings()
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
