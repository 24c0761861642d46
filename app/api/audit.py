# =============================================================================
# Audit Logging Middleware — Request/Response Lifecycle Logging
# =============================================================================
#
# Records every API request to the audit_logs table: which key, which
# tenant, which endpoint, and for chat requests which agent and message.
#
# DESIGN DECISION: Starlette middleware (not a FastAPI dependency) because
# it wraps the whole request (status code and timing included) and no
# endpoint has to opt in. Audit writes use their own DB session.
#
# DESIGN DECISION: Failures are logged but never fail the request.
# =============================================================================

from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings
from app.db.engine import async_session_factory
from app.db.models import AuditLog

logger = logging.getLogger(__name__)

_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


def _endpoint_name(path: str) -> str:
    parts = path.strip("/").split("/")
    return "/".join(parts[:2]) if parts else ""


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs API requests to audit_logs.

    Reads api_key and tenant_slug from request.state (set by the auth
    dependency) and audit_agent_key / audit_question (set by the chat
    endpoints).
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not settings.audit_logging_enabled or request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        api_key = getattr(request.state, "api_key", None)
        question = getattr(request.state, "audit_question", None)

        try:
            async with async_session_factory() as session:
                session.add(AuditLog(
                    api_key_id=api_key.id if api_key else None,
                    api_key_name=api_key.name if api_key else None,
                    tenant_slug=getattr(request.state, "tenant_slug", None),
                    endpoint=_endpoint_name(request.url.path),
                    method=request.method,
                    path=str(request.url.path),
                    agent_key=getattr(request.state, "audit_agent_key", None),
                    question=question[:500] if question else None,
                    client_ip=request.client.host if request.client else None,
                    status_code=response.status_code,
                    response_time_ms=elapsed_ms,
                ))
                await session.commit()
        except Exception as e:
            logger.warning("Failed to write audit log: %s", e)

        return response
