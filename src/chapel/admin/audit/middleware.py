"""
Middleware for audit context tracking.

Assigns every request an id and binds it to structlog's context so each log
line carries it. A valid bearer token also binds the caller's id and roles;
route dependencies still do the actual authentication.
"""

from typing import Any
from uuid import uuid4

import structlog
from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.core import jwt_service
from ..settings import settings

logger = structlog.get_logger(__name__)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Middleware that adds request and caller context for audit logging."""

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        header = settings.observability.request_id_header
        request_id = request.headers.get(header) or str(uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, path=request.url.path, method=request.method
        )

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                claims = jwt_service.verify_token(token)
            except HTTPException as e:
                # Route dependencies report authentication failures
                logger.debug("audit.context.token_ignored", detail=e.detail)
            else:
                structlog.contextvars.bind_contextvars(
                    user_id=claims.get("sub"), roles=claims.get("roles", [])
                )

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers[header] = request_id
        return response
