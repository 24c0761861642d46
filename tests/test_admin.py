# =============================================================================
# Unit Tests — Admin Endpoints & Tenant Isolation
# =============================================================================
#
# Handlers are called directly with a mocked AsyncSession, the same way the
# auth tests drive get_current_api_key. Keys of tenant "acme" (id 7) must
# never reach tenant "globex" (id 9) unless they carry the platform scope.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from app.api.admin import (
    check_tenant_access,
    create_api_key,
    create_tenant,
    get_audit_logs,
    is_platform_admin,
    list_api_keys,
    list_tenants,
    revoke_api_key,
    update_api_key,
)
from app.models.requests import CreateApiKeyRequest, CreateTenantRequest, UpdateApiKeyRequest


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


@dataclass
class FakeTenant:
    id: int
    slug: str
    is_active: bool = True


ACME = FakeTenant(id=7, slug="acme")
GLOBEX = FakeTenant(id=9, slug="globex")


@dataclass
class FakeApiKey:
    id: int = 1
    tenant_id: int = 7
    name: str = "acme-admin"
    key_prefix: str = "ak-acme0"
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    tenant: FakeTenant | None = field(default_factory=lambda: ACME)


def _acme_admin() -> FakeApiKey:
    return FakeApiKey(scopes=None)


def _platform_admin() -> FakeApiKey:
    return FakeApiKey(scopes=["admin", "platform"])


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalars.return_value.all.return_value = value if isinstance(value, list) else []
    result.scalar.return_value = value
    return result


async def _refresh(obj):
    # Stand-in for the server defaults a real INSERT would fill in
    if getattr(obj, "id", None) is None:
        obj.id = 42
    if getattr(obj, "is_active", None) is None:
        obj.is_active = True
    obj.created_at = datetime.now(UTC)


def _session(*results) -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock(side_effect=[_result(r) for r in results])
    session.commit = AsyncMock()
    session.refresh = AsyncMock(side_effect=_refresh)
    session.delete = AsyncMock()
    return session


def _where_params(session: MagicMock, call: int = 0) -> dict:
    stmt = session.execute.call_args_list[call].args[0]
    return stmt.compile().params


# ---------------------------------------------------------------------------
# Access helpers
# ---------------------------------------------------------------------------


class TestPlatformAccess:
    def test_auth_disabled_is_platform(self):
        assert is_platform_admin(None)

    def test_null_scopes_are_not_platform(self):
        """Full access within a tenant never implies cross-tenant access."""
        assert not is_platform_admin(_acme_admin())

    def test_explicit_platform_scope(self):
        assert is_platform_admin(_platform_admin())

    def test_own_tenant_allowed(self):
        check_tenant_access(_acme_admin(), ACME.id)

    def test_other_tenant_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            check_tenant_access(_acme_admin(), GLOBEX.id)
        assert exc_info.value.status_code == 403


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TestTenants:
    def test_tenant_admin_cannot_create_tenant(self):
        session = _session()
        with pytest.raises(HTTPException) as exc_info:
            _run(create_tenant(
                request=CreateTenantRequest(slug="initech", name="Initech"),
                api_key=_acme_admin(),
                session=session,
            ))
        assert exc_info.value.status_code == 403
        session.add.assert_not_called()

    def test_tenant_admin_cannot_list_tenants(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(list_tenants(api_key=_acme_admin(), session=_session()))
        assert exc_info.value.status_code == 403

    def test_platform_creates_tenant(self):
        session = _session(None)
        response = _run(create_tenant(
            request=CreateTenantRequest(slug="initech", name="Initech"),
            api_key=_platform_admin(),
            session=session,
        ))
        assert response.slug == "initech"
        session.add.assert_called_once()

    def test_duplicate_slug_is_409(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(create_tenant(
                request=CreateTenantRequest(slug="acme", name="Acme"),
                api_key=None,
                session=_session(ACME),
            ))
        assert exc_info.value.status_code == 409


# ---------------------------------------------------------------------------
# API Keys
# ---------------------------------------------------------------------------


class TestCreateApiKey:
    def test_cannot_mint_key_for_other_tenant(self):
        session = _session(GLOBEX)
        with pytest.raises(HTTPException) as exc_info:
            _run(create_api_key(
                request=CreateApiKeyRequest(name="sneaky", tenant_slug="globex"),
                api_key=_acme_admin(),
                session=session,
            ))
        assert exc_info.value.status_code == 403
        session.add.assert_not_called()

    def test_defaults_to_own_tenant(self):
        session = _session(ACME)
        response = _run(create_api_key(
            request=CreateApiKeyRequest(name="dashboard", scopes=["analytics"]),
            api_key=_acme_admin(),
            session=session,
        ))
        assert response.tenant_slug == "acme"
        assert response.tenant_id == ACME.id
        assert response.raw_key.startswith("ak-")
        assert _where_params(session) == {"slug_1": "acme"}

    def test_platform_admin_mints_for_any_tenant(self):
        response = _run(create_api_key(
            request=CreateApiKeyRequest(name="globex-dash", tenant_slug="globex"),
            api_key=_platform_admin(),
            session=_session(GLOBEX),
        ))
        assert response.tenant_id == GLOBEX.id

    def test_tenant_admin_cannot_grant_platform(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(create_api_key(
                request=CreateApiKeyRequest(name="escalate", scopes=["admin", "platform"]),
                api_key=_acme_admin(),
                session=_session(ACME),
            ))
        assert exc_info.value.status_code == 403


class TestListApiKeys:
    def test_scoped_to_own_tenant(self):
        session = _session([])
        response = _run(list_api_keys(tenant_slug=None, api_key=_acme_admin(), session=session))
        assert response.total == 0
        assert _where_params(session) == {"tenant_id_1": ACME.id}

    def test_other_tenant_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(list_api_keys(tenant_slug="globex", api_key=_acme_admin(), session=_session(GLOBEX)))
        assert exc_info.value.status_code == 403

    def test_platform_lists_everything(self):
        session = _session([FakeApiKey(), FakeApiKey(id=2, tenant_id=9, tenant=GLOBEX)])
        response = _run(list_api_keys(tenant_slug=None, api_key=_platform_admin(), session=session))
        assert response.total == 2
        assert _where_params(session) == {}


class TestUpdateAndRevoke:
    def test_update_other_tenant_key_forbidden(self):
        target = FakeApiKey(id=5, tenant_id=GLOBEX.id, tenant=GLOBEX)
        session = _session(target)
        with pytest.raises(HTTPException) as exc_info:
            _run(update_api_key(
                key_id=5,
                request=UpdateApiKeyRequest(is_active=False),
                api_key=_acme_admin(),
                session=session,
            ))
        assert exc_info.value.status_code == 403
        assert target.is_active is True
        session.commit.assert_not_awaited()

    def test_update_own_key(self):
        target = FakeApiKey(id=5, name="old")
        response = _run(update_api_key(
            key_id=5,
            request=UpdateApiKeyRequest(name="new"),
            api_key=_acme_admin(),
            session=_session(target),
        ))
        assert response.name == "new"

    def test_revoke_other_tenant_key_forbidden(self):
        session = _session(FakeApiKey(id=5, tenant_id=GLOBEX.id, tenant=GLOBEX))
        with pytest.raises(HTTPException) as exc_info:
            _run(revoke_api_key(key_id=5, api_key=_acme_admin(), session=session))
        assert exc_info.value.status_code == 403
        session.delete.assert_not_awaited()

    def test_revoke_own_key(self):
        target = FakeApiKey(id=5)
        session = _session(target)
        _run(revoke_api_key(key_id=5, api_key=_acme_admin(), session=session))
        session.delete.assert_awaited_once_with(target)

    def test_missing_key_is_404(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(revoke_api_key(key_id=99, api_key=_acme_admin(), session=_session(None)))
        assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class TestAuditLogs:
    def test_tenant_admin_sees_own_tenant_only(self):
        session = _session([], 0)
        response = _run(get_audit_logs(
            api_key_id=None, tenant_slug=None, limit=50, api_key=_acme_admin(), session=session,
        ))
        assert response.total == 0
        assert _where_params(session)["tenant_slug_1"] == "acme"

    def test_other_tenant_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            _run(get_audit_logs(
                api_key_id=None, tenant_slug="globex", limit=50,
                api_key=_acme_admin(), session=_session(),
            ))
        assert exc_info.value.status_code == 403

    def test_platform_filters_by_requested_tenant(self):
        session = _session([], 0)
        _run(get_audit_logs(
            api_key_id=None, tenant_slug="globex", limit=50,
            api_key=_platform_admin(), session=session,
        ))
        assert _where_params(session)["tenant_slug_1"] == "globex"
