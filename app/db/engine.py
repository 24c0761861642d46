# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy Engine
# FastAPI is an async framework, so we use SQLAlchemy's async engine with
# asyncpg to avoid blocking the event loop. Sessions are created per request
# via FastAPI's dependency injection.
#
# COMMIT POLICY:
# 1. Dependency-injected (get_async_session via Depends): auto-commits when
#    the request handler returns, rolls back on exception.
# 2. Self-managed (async_session_factory() directly): used by background
#    tasks (agent.py _persist_run) and middleware (audit.py) that run
#    outside the request lifecycle. These MUST commit explicitly.
#
# The engine is lazy: importing this module opens no connection, so the
# analytics endpoints and the tests run without a database.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.db.models import Base

# pool_size=5 / max_overflow=10 are demo-sized; tune for production.
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: attributes stay readable after commit without a
# lazy reload, which would fail outside the session in async code.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create missing tables. Only used when DB_AUTO_CREATE is set."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Usage in route handlers:
        @router.get("/admin/tenants")
        async def list_tenants(session: AsyncSession = Depends(get_async_session)):
            result = await session.execute(select(Tenant))
            return result.scalars().all()
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
