# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - get_async_session: FastAPI dependency for database sessions
#   - Base: SQLAlchemy declarative base for ORM models
#   - Tenant, ApiKey: who may call the API and whose CSVs they read
#   - AuditLog, AgentRun: request audit trail and persisted chat runs
# =============================================================================
