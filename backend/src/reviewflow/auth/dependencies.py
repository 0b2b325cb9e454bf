"""FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/files")
    def list_files(principal: Principal = Depends(get_current_principal)):
        ...

    @router.post("/workflow-stages")
    def create_stage(principal: Principal = Depends(require_role(UserRole.ADMIN))):
        ...
"""

from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .jwt import decode_token
from .roles import UserRole, has_permission


# HTTP Bearer token security scheme
security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as asserted by the identity service."""
    user_id: UUID
    tenant_id: UUID
    role: UserRole

    def has_role(self, required_role: UserRole) -> bool:
        return has_permission(self.role, required_role)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Validate the bearer token and return the principal it describes.

    Raises:
        HTTPException 401: If token is missing, invalid, expired, or lacks claims
    """
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")

    user_id_str = payload.get("sub")
    tenant_id_str = payload.get("tenant_id")
    if not user_id_str or not tenant_id_str:
        raise _unauthorized("Invalid token: missing subject or tenant claim")

    try:
        return Principal(
            user_id=UUID(user_id_str),
            tenant_id=UUID(tenant_id_str),
            role=UserRole(payload.get("role", UserRole.VIEWER.value)),
        )
    except ValueError as e:
        raise _unauthorized(f"Invalid token claims: {str(e)}")


def require_role(required_role: UserRole) -> Callable:
    """Create a dependency that enforces a minimum role.

    Raises:
        HTTPException 403: If the principal's role is insufficient
    """

    def role_dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_role(required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role.value}",
            )
        return principal

    return role_dependency
