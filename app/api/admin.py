# =============================================================================
# Admin API — Tenants, API Keys and Audit Trail
# =============================================================================
#
# Every endpoint requires the "admin" scope.
#
# DESIGN DECISION: Admin keys are confined to their own tenant. They can
# create, list, update and revoke that tenant's keys and read its audit
# trail; anything naming another tenant gets a 403. Cross-tenant work
# (creating or listing tenants, managing any tenant's keys) needs the
# "platform" scope, which null scopes do not imply. With auth disabled
# the caller is the platform operator.
#
# DESIGN DECISION: The raw API key is only returned ONCE at creation
# (POST /admin/keys). After that, only the key_prefix is visible.
#
# DESIGN DECISION: PATCH is_active=false soft-disables a key; DELETE
# revokes it for good by removing the row. Audit rows keep the key name.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import check_scope, get_current_api_key, tenant_slug_for
from app.db.engine import get_async_session
from app.db.models import ApiKey, AuditLog, Tenant
from app.models.requests import CreateApiKeyRequest, CreateTenantRequest, UpdateApiKeyRequest
from app.models.responses import (
    ApiKeyCreatedResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
    AuditLogListResponse,
    AuditLogResponse,
    TenantListResponse,
    TenantResponse,
)
from app.services.auth import SCOPE_ADMIN, SCOPE_PLATFORM, generate_api_key, has_platform_scope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])


def is_platform_admin(api_key: ApiKey | None) -> bool:
    """True when auth is disabled or the key explicitly lists "platform"."""
    return api_key is None or has_platform_scope(api_key.scopes)


def check_platform(api_key: ApiKey | None) -> None:
    if not is_platform_admin(api_key):
        raise HTTPException(
            status_code=403,
            detail=f"API key does not have '{SCOPE_PLATFORM}' scope.",
        )


def check_tenant_access(api_key: ApiKey | None, tenant_id: int) -> None:
    """Raise 403 when a tenant-bound admin key reaches into another tenant."""
    if is_platform_admin(api_key):
        return
    if api_key.tenant_id != tenant_id:
        raise HTTPException(
            status_code=403,
            detail="API key cannot manage another tenant.",
        )


def _check_grantable(api_key: ApiKey | None, scopes: list[str] | None) -> None:
    # A tenant admin must not mint its way up to platform access
    if scopes and SCOPE_PLATFORM in scopes:
        check_platform(api_key)


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


@router.post(
    "/admin/tenants",
    response_model=TenantResponse,
    status_code=201,
    summary="Create a tenant",
)
async def create_tenant(
    request: CreateTenantRequest,
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> TenantResponse:
    check_scope(api_key, SCOPE_ADMIN)
    check_platform(api_key)

    existing = await session.execute(select(Tenant).where(Tenant.slug == request.slug))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail=f"Tenant '{request.slug}' already exists.")

    tenant = Tenant(slug=request.slug, name=request.name)
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)

    logger.info("Tenant created: id=%d, slug='%s'", tenant.id, tenant.slug)
    return TenantResponse.model_validate(tenant)


@router.get(
    "/admin/tenants",
    response_model=TenantListResponse,
    summary="List tenants",
)
async def list_tenants(
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> TenantListResponse:
    check_scope(api_key, SCOPE_ADMIN)
    check_platform(api_key)

    result = await session.execute(select(Tenant).order_by(Tenant.slug))
    tenants = list(result.scalars().all())
    return TenantListResponse(
        tenants=[TenantResponse.model_validate(t) for t in tenants],
        total=len(tenants),
    )


# ---------------------------------------------------------------------------
# API Keys
# ---------------------------------------------------------------------------


@router.post(
    "/admin/keys",
    response_model=ApiKeyCreatedResponse,
    status_code=201,
    summary="Create a new API key",
    description=(
        "Generate a new API key for a tenant with optional scopes, rate limit "
        "and expiry. The raw key is only returned in this response."
    ),
)
async def create_api_key(
    request: CreateApiKeyRequest,
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyCreatedResponse:
    """
    Create a key for `tenant_slug`.

    When tenant_slug is omitted the key goes to the caller's own tenant
    (the default tenant when auth is disabled).
    """
    check_scope(api_key, SCOPE_ADMIN)
    _check_grantable(api_key, request.scopes)

    tenant = await _get_tenant_or_404(session, request.tenant_slug or tenant_slug_for(api_key))
    check_tenant_access(api_key, tenant.id)

    raw_key, key_prefix, key_hash = generate_api_key()
    new_key = ApiKey(
        tenant_id=tenant.id,
        name=request.name,
        key_prefix=key_prefix,
        key_hash=key_hash,
        scopes=request.scopes,
        rate_limit_rpm=request.rate_limit_rpm,
        expires_at=request.expires_at,
    )
    session.add(new_key)
    await session.commit()
    await session.refresh(new_key)

    logger.info(
        "API key created: id=%d, tenant='%s', prefix='%s'",
        new_key.id, tenant.slug, new_key.key_prefix,
    )

    return ApiKeyCreatedResponse(
        id=new_key.id,
        name=new_key.name,
        key_prefix=new_key.key_prefix,
        tenant_id=tenant.id,
        tenant_slug=tenant.slug,
        raw_key=raw_key,
        scopes=new_key.scopes,
        rate_limit_rpm=new_key.rate_limit_rpm,
        created_at=new_key.created_at,
        expires_at=new_key.expires_at,
    )


@router.get(
    "/admin/keys",
    response_model=ApiKeyListResponse,
    summary="List API keys",
)
async def list_api_keys(
    tenant_slug: str | None = Query(default=None),
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyListResponse:
    """List keys, optionally for one tenant (never includes raw key or hash)."""
    check_scope(api_key, SCOPE_ADMIN)

    stmt = select(ApiKey).order_by(ApiKey.created_at.desc())
    if tenant_slug:
        tenant = await _get_tenant_or_404(session, tenant_slug)
        check_tenant_access(api_key, tenant.id)
        stmt = stmt.where(ApiKey.tenant_id == tenant.id)
    elif not is_platform_admin(api_key):
        stmt = stmt.where(ApiKey.tenant_id == api_key.tenant_id)
    keys = list((await session.execute(stmt)).scalars().all())

    return ApiKeyListResponse(keys=[_to_key_response(k) for k in keys], total=len(keys))


@router.patch(
    "/admin/keys/{key_id}",
    response_model=ApiKeyResponse,
    summary="Update an API key",
)
async def update_api_key(
    key_id: int,
    request: UpdateApiKeyRequest,
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyResponse:
    check_scope(api_key, SCOPE_ADMIN)
    _check_grantable(api_key, request.scopes)

    target = await _get_key_or_404(session, key_id)
    check_tenant_access(api_key, target.tenant_id)

    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(target, field, value)

    await session.commit()
    await session.refresh(target)

    logger.info("API key updated: id=%d, name='%s'", target.id, target.name)
    return _to_key_response(target)


@router.delete(
    "/admin/keys/{key_id}",
    status_code=204,
    summary="Revoke an API key",
)
async def revoke_api_key(
    key_id: int,
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> None:
    check_scope(api_key, SCOPE_ADMIN)

    target = await _get_key_or_404(session, key_id)
    check_tenant_access(api_key, target.tenant_id)

    await session.delete(target)
    await session.commit()

    logger.info("API key revoked: id=%d, name='%s'", key_id, target.name)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@router.get(
    "/admin/audit",
    response_model=AuditLogListResponse,
    summary="View audit logs",
    description="Query the audit trail of the caller's tenant. Filter by API key.",
)
async def get_audit_logs(
    api_key_id: int | None = Query(default=None),
    tenant_slug: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    api_key: ApiKey | None = Depends(get_current_api_key),
    session: AsyncSession = Depends(get_async_session),
) -> AuditLogListResponse:
    check_scope(api_key, SCOPE_ADMIN)

    if not is_platform_admin(api_key):
        own_slug = tenant_slug_for(api_key)
        if tenant_slug is not None and tenant_slug != own_slug:
            raise HTTPException(
                status_code=403,
                detail="API key cannot read another tenant's audit log.",
            )
        tenant_slug = own_slug

    conditions = []
    if api_key_id is not None:
        conditions.append(AuditLog.api_key_id == api_key_id)
    if tenant_slug is not None:
        conditions.append(AuditLog.tenant_slug == tenant_slug)

    stmt = select(AuditLog).where(*conditions).order_by(AuditLog.created_at.desc()).limit(limit)
    logs = list((await session.execute(stmt)).scalars().all())
    total = (
        await session.execute(select(func.count(AuditLog.id)).where(*conditions))
    ).scalar() or 0

    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_tenant_or_404(session: AsyncSession, slug: str) -> Tenant:
    tenant = (
        await session.execute(select(Tenant).where(Tenant.slug == slug))
    ).scalar_one_or_none()
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant '{slug}' not found.")
    return tenant


async def _get_key_or_404(session: AsyncSession, key_id: int) -> ApiKey:
    api_key = (
        await session.execute(select(ApiKey).where(ApiKey.id == key_id))
    ).scalar_one_or_none()
    if api_key is None:
        raise HTTPException(status_code=404, detail=f"API key {key_id} not found.")
    return api_key


def _to_key_response(key: ApiKey) -> ApiKeyResponse:
    """Convert an ApiKey ORM model to a response (excluding sensitive data)."""
    return ApiKeyResponse(
        id=key.id,
        name=key.name,
        key_prefix=key.key_prefix,
        tenant_id=key.tenant_id,
        tenant_slug=key.tenant.slug if key.tenant else None,
        scopes=key.scopes,
        rate_limit_rpm=key.rate_limit_rpm,
        is_active=key.is_active,
        created_at=key.created_at,
        expires_at=key.expires_at,
        last_used_at=key.last_used_at,
    )
