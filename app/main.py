# =============================================================================
# Application Entry Point — FastAPI App Factory
# =============================================================================
#
# Run locally:
#   uvicorn app.main:app --reload
#
# DESIGN DECISION: create_app() factory plus a module-level `app`.
# Tests build their own instance and apply dependency_overrides to it
# without touching the one uvicorn serves.
#
# DESIGN DECISION: Tables are only created on startup when
# DB_AUTO_CREATE=true. Analytics endpoints never touch the database, so
# the service still answers dashboard queries when Postgres is down and
# auth is disabled.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import admin, agent, data, revenue, sales
from app.api.audit import AuditLoggingMiddleware
from app.config import settings
from app.db.engine import init_db
from app.models.responses import HealthResponse

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.db_auto_create:
        logger.info("Creating database tables")
        await init_db()
    logger.info(
        "%s v%s started (auth_enabled=%s, data_dir=%s)",
        settings.app_name, settings.app_version, settings.auth_enabled, settings.data_dir,
    )
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "ARR and sales-pipeline analytics over CSV exports, with "
            "tool-calling agents that answer questions from the same numbers."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(AuditLoggingMiddleware)

    app.include_router(agent.router)
    app.include_router(revenue.router)
    app.include_router(sales.router)
    app.include_router(data.router)
    app.include_router(admin.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=settings.app_version,
            service=settings.app_name,
        )

    return app


app = create_app()
