# =============================================================================
# Unit Tests — Authorization & Security
# =============================================================================
#
# Tests auth components without requiring Redis, a running API, or real API keys.
# Uses mocking for external dependencies (Redis, DB sessions).
#
# Test groups:
#   1. Key generation, hashing & scopes (pure functions)
#   2. Auth dependency (get_current_api_key)
#   3. Scope checking & tenant resolution
#   4. Rate limiter (check_rate_limit)
#   5. Request/response model validation
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from app.services.auth import generate_api_key, has_scope, hash_api_key, invalid_scopes


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# 1. Key Generation, Hashing & Scopes
# ---------------------------------------------------------------------------


class TestKeyGeneration:
    """Tests for API key generation and hashing."""

    def test_key_format_has_prefix(self):
        """Generated key starts with 'ak-'."""
        raw_key, prefix, key_hash = generate_api_key()
        assert raw_key.startswith("ak-")

    def test_key_length(self):
        """Generated key is 'ak-' + 64 hex chars = 67 chars total."""
        raw_key, prefix, key_hash = generate_api_key()
        assert len(raw_key) == 67

    def test_prefix_is_first_8_chars(self):
        raw_key, prefix, key_hash = generate_api_key()
        assert prefix == raw_key[:8]

    def test_hash_is_64_hex(self):
        """Key hash is a 64-char hex digest (SHA-256)."""
        raw_key, prefix, key_hash = generate_api_key()
        assert len(key_hash) == 64
        int(key_hash, 16)

    def test_keys_are_unique(self):
        raw1, _, hash1 = generate_api_key()
        raw2, _, hash2 = generate_api_key()
        assert raw1 != raw2
        assert hash1 != hash2

    def test_hash_is_deterministic(self):
        assert hash_api_key("ak-abc123") == hash_api_key("ak-abc123")


class TestScopes:
    def test_empty_scopes_grant_everything(self):
        assert has_scope(None, "admin")
        assert has_scope([], "admin")

    def test_listed_scope(self):
        assert has_scope(["agent", "analytics"], "analytics")
        assert not has_scope(["agent"], "admin")

    def test_invalid_scopes(self):
        assert invalid_scopes(["agent", "ingest", "ask"]) == ["ingest", "ask"]
        assert invalid_scopes(None) == []


# ---------------------------------------------------------------------------
# Helpers — lightweight fakes for auth dependency tests
# ---------------------------------------------------------------------------


@dataclass
class FakeTenant:
    id: int = 7
    slug: str = "acme"
    is_active: bool = True


@dataclass
class FakeApiKey:
    """Lightweight stand-in for the ApiKey ORM model."""

    id: int = 1
    tenant_id: int = 7
    name: str = "test-key"
    key_prefix: str = "ak-test0"
    key_hash: str = ""
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    tenant: FakeTenant | None = None


@dataclass
class FakeCredentials:
    """Stand-in for HTTPAuthorizationCredentials."""

    credentials: str = "ak-testkey"


class FakeRequestState:
    """Writable request.state."""

    pass


class FakeRequest:
    """Minimal Request stand-in."""

    def __init__(self):
        self.state = FakeRequestState()


def _session_returning(api_key) -> AsyncMock:
    mock_session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = api_key
    mock_session.execute.return_value = mock_result
    return mock_session


# ---------------------------------------------------------------------------
# 2. Auth Dependency (get_current_api_key)
# ---------------------------------------------------------------------------


class TestGetCurrentApiKey:
    """Tests for the get_current_api_key dependency."""

    def test_auth_disabled_returns_none(self):
        from app.api.deps import get_current_api_key

        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = False
            result = _run(get_current_api_key(
                request=FakeRequest(),
                credentials=None,
                session=AsyncMock(),
            ))
            assert result is None

    def test_missing_credentials_raises_401(self):
        from app.api.deps import get_current_api_key

        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=None,
                    session=AsyncMock(),
                ))
            assert exc_info.value.status_code == 401

    def test_invalid_key_raises_401(self):
        from app.api.deps import get_current_api_key

        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(None),
                ))
            assert exc_info.value.status_code == 401

    def test_inactive_key_raises_403(self):
        from app.api.deps import get_current_api_key

        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(FakeApiKey(is_active=False)),
                ))
            assert exc_info.value.status_code == 403
            assert "deactivated" in exc_info.value.detail

    def test_expired_key_raises_403(self):
        from app.api.deps import get_current_api_key

        fake_key = FakeApiKey(expires_at=datetime.now(UTC) - timedelta(hours=1))
        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(fake_key),
                ))
            assert exc_info.value.status_code == 403
            assert "expired" in exc_info.value.detail

    def test_inactive_tenant_raises_403(self):
        from app.api.deps import get_current_api_key

        fake_key = FakeApiKey(tenant=FakeTenant(is_active=False))
        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(fake_key),
                ))
            assert exc_info.value.status_code == 403
            assert "Tenant" in exc_info.value.detail

    def test_valid_key_returns_api_key(self):
        """When key is valid, returns the ApiKey and stamps request.state."""
        from app.api.deps import get_current_api_key

        fake_key = FakeApiKey(tenant=FakeTenant(slug="acme"))
        request = FakeRequest()

        with (
            patch("app.api.deps.settings") as mock_settings,
            patch("app.api.deps.check_rate_limit", new_callable=AsyncMock) as mock_limit,
        ):
            mock_settings.auth_enabled = True
            result = _run(get_current_api_key(
                request=request,
                credentials=FakeCredentials(),
                session=_session_returning(fake_key),
            ))

        assert result is fake_key
        mock_limit.assert_awaited_once_with(fake_key)
        assert fake_key.last_used_at is not None
        assert request.state.api_key is fake_key
        assert request.state.tenant_slug == "acme"

    def test_rate_limit_propagates(self):
        from app.api.deps import get_current_api_key

        with (
            patch("app.api.deps.settings") as mock_settings,
            patch(
                "app.api.deps.check_rate_limit",
                new_callable=AsyncMock,
                side_effect=HTTPException(status_code=429, detail="Rate limit exceeded."),
            ),
        ):
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_api_key(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(FakeApiKey()),
                ))
            assert exc_info.value.status_code == 429


# ---------------------------------------------------------------------------
# 3. Scope Checking & Tenant Resolution
# ---------------------------------------------------------------------------


class TestCheckScope:
    """Tests for the check_scope function."""

    def test_none_api_key_passes(self):
        from app.api.deps import check_scope
        check_scope(None, "admin")

    def test_null_scopes_means_full_access(self):
        from app.api.deps import check_scope
        check_scope(FakeApiKey(scopes=None), "admin")

    def test_matching_scope_passes(self):
        from app.api.deps import check_scope
        check_scope(FakeApiKey(scopes=["agent", "analytics"]), "analytics")

    def test_missing_scope_raises_403(self):
        from app.api.deps import check_scope
        with pytest.raises(HTTPException) as exc_info:
            check_scope(FakeApiKey(scopes=["agent"]), "admin")
        assert exc_info.value.status_code == 403
        assert "admin" in exc_info.value.detail


class TestTenantSlugFor:
    def test_anonymous_uses_default(self):
        from app.api.deps import tenant_slug_for

        with patch("app.api.deps.settings") as mock_settings:
            mock_settings.default_tenant_slug = "default"
            assert tenant_slug_for(None) == "default"
            assert tenant_slug_for(FakeApiKey(tenant=None)) == "default"

    def test_key_tenant(self):
        from app.api.deps import tenant_slug_for
        assert tenant_slug_for(FakeApiKey(tenant=FakeTenant(slug="globex"))) == "globex"


# ---------------------------------------------------------------------------
# 4. Rate Limiter
# ---------------------------------------------------------------------------


def _redis_with_count(count: int) -> MagicMock:
    # Pipeline commands are queued synchronously; only execute() is awaited
    mock_pipe = MagicMock()
    mock_pipe.execute = AsyncMock(return_value=[None, count, None, None])
    mock_redis = MagicMock()
    mock_redis.pipeline.return_value = mock_pipe
    return mock_redis


class TestRateLimiter:
    """Tests for the Redis-based rate limiter."""

    def test_none_api_key_skips(self):
        from app.services.rate_limiter import check_rate_limit
        _run(check_rate_limit(None))

    def test_under_limit_passes(self):
        from app.services.rate_limiter import check_rate_limit

        with patch(
            "app.services.rate_limiter._get_rate_limit_redis",
            return_value=_redis_with_count(5),
        ):
            _run(check_rate_limit(FakeApiKey(rate_limit_rpm=100)))

    def test_over_limit_raises_429(self):
        from app.services.rate_limiter import check_rate_limit

        with patch(
            "app.services.rate_limiter._get_rate_limit_redis",
            return_value=_redis_with_count(10),
        ):
            with pytest.raises(HTTPException) as exc_info:
                _run(check_rate_limit(FakeApiKey(rate_limit_rpm=10)))
            assert exc_info.value.status_code == 429
            assert exc_info.value.headers == {"Retry-After": "60"}

    def test_default_limit_from_settings(self):
        from app.services.rate_limiter import rate_limit_for

        with patch("app.services.rate_limiter.settings") as mock_settings:
            mock_settings.rate_limit_rpm = 100
            assert rate_limit_for(FakeApiKey(rate_limit_rpm=None)) == 100
            assert rate_limit_for(FakeApiKey(rate_limit_rpm=5)) == 5

    def test_redis_unavailable_allows_through(self):
        """When Redis is down, request is allowed (graceful degradation)."""
        from app.services.rate_limiter import check_rate_limit

        with patch(
            "app.services.rate_limiter._get_rate_limit_redis",
            side_effect=ConnectionError("Redis down"),
        ):
            _run(check_rate_limit(FakeApiKey(rate_limit_rpm=10)))


# ---------------------------------------------------------------------------
# 5. Request/Response Model Validation
# ---------------------------------------------------------------------------


class TestRequestModels:
    """Tests for Pydantic request model validation."""

    def test_create_key_requires_name(self):
        from pydantic import ValidationError

        from app.models.requests import CreateApiKeyRequest

        with pytest.raises(ValidationError):
            CreateApiKeyRequest()

    def test_create_key_valid(self):
        from app.models.requests import CreateApiKeyRequest

        req = CreateApiKeyRequest(name="test-key", scopes=["agent"])
        assert req.name == "test-key"
        assert req.tenant_slug is None

    def test_create_key_rejects_unknown_scope(self):
        from pydantic import ValidationError

        from app.models.requests import CreateApiKeyRequest

        with pytest.raises(ValidationError):
            CreateApiKeyRequest(name="k", scopes=["ingest"])

    def test_tenant_slug_pattern(self):
        from pydantic import ValidationError

        from app.models.requests import CreateTenantRequest

        assert CreateTenantRequest(slug="acme-eu", name="Acme EU").slug == "acme-eu"
        with pytest.raises(ValidationError):
            CreateTenantRequest(slug="Acme EU", name="Acme EU")

    def test_chat_request_alias(self):
        from app.models.requests import ChatRequest

        req = ChatRequest.model_validate({"message": "hi", "agentKey": "arr_revenue"})
        assert req.agent_key == "arr_revenue"

    def test_update_key_all_optional(self):
        from app.models.requests import UpdateApiKeyRequest

        req = UpdateApiKeyRequest()
        assert req.name is None
        assert req.is_active is None


class TestResponseModels:
    """Tests for Pydantic response model serialization."""

    def test_api_key_response_excludes_hash(self):
        from app.models.responses import ApiKeyResponse

        schema = ApiKeyResponse.model_json_schema()
        assert "key_hash" not in schema.get("properties", {})

    def test_api_key_created_response_includes_raw_key(self):
        from app.models.responses import ApiKeyCreatedResponse

        schema = ApiKeyCreatedResponse.model_json_schema()
        assert "raw_key" in schema.get("properties", {})
