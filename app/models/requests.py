# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API. FastAPI uses
# them for body validation (automatic 422s) and for the OpenAPI docs.
#
# Analytics filters are not here: they arrive as query parameters and are
# modelled in app/models/filters.py, shared with the agent tools.
# =============================================================================

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Scope = Literal["agent", "analytics", "admin", "platform"]


class HistoryMessage(BaseModel):
    """One prior chat turn. Roles other than "user" are treated as assistant."""

    role: str = Field(..., examples=["user", "assistant"])
    content: str


class ChatRequest(BaseModel):
    """
    Request body for POST /agent/chat and POST /agent/chat/stream.

    Example:
        {
            "message": "What's driving ARR change over the last 3 months?",
            "agentKey": "arr_revenue",
            "history": [{"role": "user", "content": "Hi"}]
        }
    """

    message: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The user's question",
        examples=["What's our current ARR and year-end forecast?"],
    )

    agent_key: str = Field(
        ...,
        alias="agentKey",
        description="Which agent answers: sales_pipeline or arr_revenue",
        examples=["arr_revenue"],
    )

    history: list[HistoryMessage] | None = Field(
        default=None,
        description="Earlier turns of the conversation, oldest first",
    )

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Admin: Tenants & API Keys
# ---------------------------------------------------------------------------


class CreateTenantRequest(BaseModel):
    """Request body for POST /admin/tenants."""

    slug: str = Field(
        ...,
        min_length=2,
        max_length=100,
        pattern=r"^[a-z0-9][a-z0-9_-]*$",
        description="Lowercase identifier; also the data directory name",
        examples=["acme"],
    )
    name: str = Field(..., min_length=1, max_length=200, examples=["Acme Corp"])


class CreateApiKeyRequest(BaseModel):
    """
    Request body for POST /admin/keys.

    The key belongs to the tenant named by tenant_slug (default tenant when
    omitted).
    """

    name: str = Field(..., min_length=1, max_length=200, examples=["finance-dashboard"])
    tenant_slug: str | None = Field(default=None, examples=["acme"])
    scopes: list[Scope] | None = Field(
        default=None,
        description="Allowed scopes. Null or empty = full access.",
        examples=[["agent", "analytics"]],
    )
    rate_limit_rpm: int | None = Field(default=None, ge=1, le=10000)
    expires_at: datetime | None = None


class UpdateApiKeyRequest(BaseModel):
    """Request body for PATCH /admin/keys/{key_id}. Omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    scopes: list[Scope] | None = None
    rate_limit_rpm: int | None = Field(default=None, ge=1, le=10000)
    is_active: bool | None = None
    expires_at: datetime | None = None
