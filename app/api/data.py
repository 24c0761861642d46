# =============================================================================
# Data API — Loaded CSV Summary and Reload
# =============================================================================
#
# DESIGN DECISION: CSV exports are read once per tenant and cached in
# memory. POST /data/reload drops the cache so a fresh export is picked up
# without restarting the process. Supervisors built on the old store are
# rebuilt on the next chat because AgentService compares store identity.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.api.deps import check_scope, get_current_api_key, tenant_slug_for
from app.db.models import ApiKey
from app.models.responses import DataSummaryResponse
from app.services.auth import SCOPE_ADMIN, SCOPE_ANALYTICS
from app.services.data_store import get_data_store, reload_data_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data", tags=["Data"])


@router.get(
    "/summary",
    response_model=DataSummaryResponse,
    summary="Row counts of the loaded CSV datasets",
)
async def data_summary(
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> DataSummaryResponse:
    check_scope(api_key, SCOPE_ANALYTICS)
    tenant_slug = tenant_slug_for(api_key)
    return DataSummaryResponse(
        tenant=tenant_slug,
        counts=get_data_store(tenant_slug).summary(),
    )


@router.post(
    "/reload",
    response_model=DataSummaryResponse,
    summary="Reload the CSV datasets from disk",
)
async def data_reload(
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> DataSummaryResponse:
    check_scope(api_key, SCOPE_ADMIN)
    tenant_slug = tenant_slug_for(api_key)
    store = reload_data_store(tenant_slug)
    logger.info("Reloaded CSV data for tenant '%s' from %s", tenant_slug, store.data_dir)
    return DataSummaryResponse(tenant=tenant_slug, counts=store.summary())
