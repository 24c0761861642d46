# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# The analytics data itself lives in CSV files (see app/services/data_store.py).
# PostgreSQL only holds who may call the API and what they did.
#
# SCHEMA OVERVIEW:
#
# ┌──────────────┐       ┌──────────────────────────────┐
# │  tenants     │       │  api_keys                    │
# ├──────────────┤       ├──────────────────────────────┤
# │ id (PK)      │──1:N─▶│ tenant_id (FK → tenants.id)  │
# │ slug (uniq)  │       │ key_hash (sha256, unique)    │
# │ name         │       │ key_prefix, scopes (jsonb)   │
# │ is_active    │       │ rate_limit_rpm, expires_at   │
# └──────────────┘       │ is_active, last_used_at      │
#        │               └──────────────────────────────┘
#        │ 1:N                      │ 0..1:N
#        ▼                          ▼
# ┌──────────────┐       ┌──────────────────────────────┐
# │  agent_runs  │       │  audit_logs                  │
# └──────────────┘       └──────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. Tenant slug doubles as the data directory name: <data_dir>/<slug>/.
#    Keys never carry their own data scope; the tenant decides.
#
# 2. JSONB for scopes and tool calls. Both are small, read whole, and
#    never joined on.
# =============================================================================

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class. All ORM models inherit from this."""

    pass


class Tenant(Base):
    """
    An organisation whose analytics CSVs are served from <data_dir>/<slug>/.
    """

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # URL- and path-safe identifier, e.g. "acme"
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Deactivating a tenant locks out all of its keys
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    api_keys: Mapped[list["ApiKey"]] = relationship(
        "ApiKey",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug='{self.slug}', active={self.is_active})>"


# =============================================================================
# Authorization & Audit
# =============================================================================
#
# DESIGN DECISION: SHA-256 for key hashing (not bcrypt). API keys are
# 32-byte random tokens; high entropy makes rainbow tables infeasible and
# a fast hash keeps per-request validation cheap.
# =============================================================================


class ApiKey(Base):
    """
    A bearer credential belonging to one tenant.

    The raw key is only returned once at creation time.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Human-readable label (e.g., "finance-dashboard")
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # First 8 chars of the key for identification in logs
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    # SHA-256 hash of the full key, never plaintext
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Allowed scopes: ["agent", "analytics", "admin"]
    # Null or empty = full access
    scopes: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)

    # Null = settings.rate_limit_rpm
    rate_limit_rpm: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Null = never expires
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    tenant: Mapped["Tenant"] = relationship(
        "Tenant", back_populates="api_keys", lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApiKey(id={self.id}, name='{self.name}', "
            f"prefix='{self.key_prefix}', active={self.is_active})>"
        )


class AuditLog(Base):
    """Immutable audit trail for API requests."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Null if auth disabled
    api_key_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("api_keys.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Snapshot, preserved if the key is later deleted
    api_key_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    tenant_slug: Mapped[str | None] = mapped_column(String(100), nullable=True)

    endpoint: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)

    # Agent key and message, set by the chat endpoints
    agent_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    question: Mapped[str | None] = mapped_column(Text, nullable=True)

    # IPv6-safe
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)

    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# =============================================================================
# Agent Runs
# =============================================================================
#
# One row per non-streaming chat. Written by a background task after the
# response is sent, so a database hiccup never fails the chat itself.
# =============================================================================


class AgentRun(Base):
    __tablename__ = "agent_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
    )
    api_key_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("api_keys.id", ondelete="SET NULL"),
        nullable=True,
    )

    agent_key: Mapped[str] = mapped_column(String(100), nullable=False)

    # Tab the supervisor routed to, e.g. "movement"
    route: Mapped[str | None] = mapped_column(String(50), nullable=True)

    message: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [{"tool", "input", "output", "status"}]
    tool_calls: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # "completed" | "error"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AgentRun(id={self.id}, agent='{self.agent_key}', "
            f"route='{self.route}', status='{self.status}')>"
        )


api_key_tenant_idx = Index("idx_api_key_tenant", ApiKey.tenant_id)

api_key_prefix_idx = Index("idx_api_key_prefix", ApiKey.key_prefix)

audit_log_api_key_idx = Index(
    "idx_audit_log_api_key_created",
    AuditLog.api_key_id,
    AuditLog.created_at,
)

agent_run_tenant_idx = Index(
    "idx_agent_run_tenant_created",
    AgentRun.tenant_id,
    AgentRun.created_at,
)
