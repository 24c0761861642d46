# =============================================================================
# Auth Service — API Key Generation, Hashing & Scopes
# =============================================================================
#
# Pure functions for API key management. No FastAPI dependency, so the auth
# dependency, the admin endpoints and the tests share them.
#
# Raw keys look like "ak-<64 hex chars>". Only the SHA-256 hex digest is
# stored; the 8-char prefix identifies a key in logs and admin listings.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets

KEY_PREFIX = "ak-"
PREFIX_LENGTH = 8

SCOPE_AGENT = "agent"
SCOPE_ANALYTICS = "analytics"
SCOPE_ADMIN = "admin"
# Cross-tenant administration. Never implied by null scopes: it must be
# listed on the key explicitly.
SCOPE_PLATFORM = "platform"
ALL_SCOPES = (SCOPE_AGENT, SCOPE_ANALYTICS, SCOPE_ADMIN, SCOPE_PLATFORM)


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_prefix, key_hash):
        - raw_key: Full key to return to the user (only visible once)
        - key_prefix: First 8 chars for identification in logs/admin
        - key_hash: SHA-256 hex digest for storage in the database
    """
    raw_key = f"{KEY_PREFIX}{secrets.token_hex(32)}"
    return raw_key, raw_key[:PREFIX_LENGTH], hash_api_key(raw_key)


def hash_api_key(raw_key: str) -> str:
    """Hash an API key using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def has_scope(scopes: list[str] | None, required: str) -> bool:
    """Null or empty scopes mean full access."""
    if not scopes:
        return True
    return required in scopes


def invalid_scopes(scopes: list[str] | None) -> list[str]:
    return [s for s in scopes or [] if s not in ALL_SCOPES]


def has_platform_scope(scopes: list[str] | None) -> bool:
    return SCOPE_PLATFORM in (scopes or [])
