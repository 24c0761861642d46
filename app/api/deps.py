# =============================================================================
# Auth Dependencies — API Key, Scope and Tenant Resolution
# =============================================================================
#
# 1. get_current_api_key() — extract & validate the Bearer token
# 2. check_scope()         — verify endpoint-level permission
# 3. tenant_slug_for()     — pick the tenant whose CSVs a request reads
# 4. query_filters()       — analytics filter models from query strings
#
# DESIGN DECISION: FastAPI dependency (not middleware) for auth.
# Each endpoint opts in via Depends(get_current_api_key), the resolved
# ApiKey is available in the handler, and tests swap it out with
# dependency_overrides. With auth disabled it returns None and every
# request reads the default tenant's data.
#
# DESIGN DECISION: HTTPBearer(auto_error=False) so a missing header is
# handled here (401 with our own message) rather than by FastAPI.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar, get_args, get_origin

from fastapi import Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.engine import get_async_session
from app.db.models import ApiKey
from app.services.auth import has_scope, hash_api_key
from app.services.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

FilterModel = TypeVar("FilterModel", bound=BaseModel)


async def get_current_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKey | None:
    """
    Validate the bearer API key.

    When auth_enabled=False: returns None (anonymous, default tenant).
    When auth_enabled=True:
    - SHA-256 hashes the token and looks it up in api_keys
    - Validates key is_active, not expired, and its tenant is active
    - Applies the per-key rate limit
    - Stamps last_used_at and stores the key on request.state

    Raises:
        HTTPException 401: Missing or unknown API key
        HTTPException 403: Key inactive or expired, or tenant inactive
        HTTPException 429: Rate limit exceeded
    """
    if not settings.auth_enabled:
        return None

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide 'Authorization: Bearer <key>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    stmt = select(ApiKey).where(ApiKey.key_hash == hash_api_key(credentials.credentials))
    api_key = (await session.execute(stmt)).scalar_one_or_none()

    if api_key is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not api_key.is_active:
        raise HTTPException(status_code=403, detail="API key has been deactivated.")

    if api_key.expires_at and api_key.expires_at < datetime.now(UTC):
        raise HTTPException(status_code=403, detail="API key has expired.")

    if api_key.tenant is not None and not api_key.tenant.is_active:
        raise HTTPException(status_code=403, detail="Tenant has been deactivated.")

    await check_rate_limit(api_key)

    api_key.last_used_at = datetime.now(UTC)
    request.state.api_key = api_key
    request.state.tenant_slug = tenant_slug_for(api_key)

    return api_key


def check_scope(api_key: ApiKey | None, required_scope: str) -> None:
    """
    Raise 403 unless the key carries required_scope.

    No-op when auth is disabled (api_key is None) or the key has
    null/empty scopes (full access).
    """
    if api_key is None:
        return
    if not has_scope(api_key.scopes, required_scope):
        raise HTTPException(
            status_code=403,
            detail=f"API key does not have '{required_scope}' scope.",
        )


def tenant_slug_for(api_key: ApiKey | None) -> str:
    """Slug of the tenant whose data store serves this request."""
    if api_key is None or api_key.tenant is None:
        return settings.default_tenant_slug
    return api_key.tenant.slug


# ---------------------------------------------------------------------------
# Analytics Filters from Query Strings
# ---------------------------------------------------------------------------
# Filters arrive as repeated query params (?region=Europe&region=APAC) under
# their camelCase names. List-typed fields collect every value; scalar
# fields take the last one.


def _is_list_field(annotation: Any) -> bool:
    if get_origin(annotation) is list:
        return True
    return any(get_origin(arg) is list for arg in get_args(annotation))


def query_filters(model: type[FilterModel]) -> Callable[[Request], FilterModel]:
    """Build a dependency that validates query params into `model`."""
    list_params = {
        field.alias or name
        for name, field in model.model_fields.items()
        if _is_list_field(field.annotation)
    }

    def dependency(request: Request) -> FilterModel:
        params = request.query_params
        data = {
            key: params.getlist(key) if key in list_params else params.getlist(key)[-1]
            for key in params.keys()
        }
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError(e.errors()) from e

    return dependency
