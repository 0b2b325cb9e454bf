"""Middleware for tenant context extraction.

Attaches the tenant id from the bearer token to request.state so logging and
error handlers can tag records with it. This is context only: authentication
and authorization happen in the get_current_principal dependency.
"""

from typing import Callable
from uuid import UUID

import jwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.jwt import decode_token


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Extract tenant_id from the Authorization header into request.state.

    Missing or invalid tokens leave request.state.tenant_id as None; the
    endpoint's dependencies reject the request properly.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.tenant_id = None

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return await call_next(request)

        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return await call_next(request)

        try:
            payload = decode_token(parts[1])
            tenant_id_str = payload.get("tenant_id")
            if tenant_id_str:
                request.state.tenant_id = UUID(tenant_id_str)
        except (jwt.InvalidTokenError, ValueError):
            pass

        return await call_next(request)
