# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# Analytics endpoints return the compute dicts as-is (camelCase keys, the
# same payload the agent tools see), so they have no response model here.
# =============================================================================

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class AgentConfigResponse(BaseModel):
    """Public agent description. The system prompt is never exposed."""

    key: str
    name: str
    description: str
    icon: str
    suggestedQueries: list[str] = Field(default_factory=list)
    hasSupervisor: bool = False


class ToolCallInfo(BaseModel):
    tool: str | None = None
    input: Any = None
    output: Any = None
    status: str = "completed"


class ChatResponse(BaseModel):
    """Response for POST /agent/chat."""

    answer: str
    toolCalls: list[ToolCallInfo] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


class DataSummaryResponse(BaseModel):
    """Row counts per loaded CSV for one tenant."""

    tenant: str
    counts: dict[str, int]


# ---------------------------------------------------------------------------
# Admin: Tenants, API Keys, Audit
# ---------------------------------------------------------------------------


class TenantResponse(BaseModel):
    id: int
    slug: str
    name: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TenantListResponse(BaseModel):
    tenants: list[TenantResponse]
    total: int


class ApiKeyResponse(BaseModel):
    """
    Response for API key details.

    Never includes raw key or hash, only the prefix for identification.
    """

    id: int
    name: str
    key_prefix: str
    tenant_id: int
    tenant_slug: str | None = None
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    is_active: bool
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None


class ApiKeyCreatedResponse(BaseModel):
    """
    Response for POST /admin/keys — returned once at key creation.

    WARNING: The raw_key is only returned in this response.
    """

    id: int
    name: str
    key_prefix: str
    tenant_id: int
    tenant_slug: str
    raw_key: str = Field(
        description="The full API key. Store it securely, it will NOT be shown again.",
    )
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    created_at: datetime
    expires_at: datetime | None = None


class ApiKeyListResponse(BaseModel):
    keys: list[ApiKeyResponse]
    total: int


class AuditLogResponse(BaseModel):
    id: int
    api_key_id: int | None = None
    api_key_name: str | None = None
    tenant_slug: str | None = None
    endpoint: str
    method: str
    path: str
    agent_key: str | None = None
    question: str | None = None
    client_ip: str | None = None
    status_code: int | None = None
    response_time_ms: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    logs: list[AuditLogResponse]
    total: int
