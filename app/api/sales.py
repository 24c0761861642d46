# =============================================================================
# Sales API — Pipeline, Forecast and Quota Endpoints
# =============================================================================
#
# Thin wrappers over SalesCompute for the tenant of the calling key.
#
# DESIGN DECISION: Plain `def` handlers.
# The computations are CPU-bound loops over the whole store (Monte Carlo
# runs thousands of iterations). FastAPI runs sync handlers in its
# threadpool, off the event loop that serves streaming chats.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import check_scope, get_current_api_key, query_filters, tenant_slug_for
from app.db.models import ApiKey
from app.models.filters import (
    KeyDealsFilters,
    MonteCarloParams,
    PipelineMovementFilters,
    QuotaFilters,
    SalesFilters,
)
from app.services.auth import SCOPE_ANALYTICS
from app.services.data_store import get_data_store
from app.services.sales_compute import SalesCompute

router = APIRouter(prefix="/sales", tags=["Sales Analytics"])


def get_sales_compute(
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> SalesCompute:
    check_scope(api_key, SCOPE_ANALYTICS)
    return SalesCompute(get_data_store(tenant_slug_for(api_key)))


@router.get("/overview", summary="Sales KPI cards")
def overview(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.overview_metrics(filters)


@router.get("/funnel", summary="Open pipeline by stage")
def funnel(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.overview_funnel(filters)


@router.get("/key-deals", summary="Top open deals, unweighted")
def key_deals(
    filters: KeyDealsFilters = Depends(query_filters(KeyDealsFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.overview_key_deals(filters)


@router.get("/closed-deals", summary="Closed ACV deals")
def closed_deals(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.overview_closed_deals(filters)


@router.get("/at-risk", summary="Stalled or low-probability open deals")
def at_risk(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.at_risk_deals(filters)


@router.get("/forecast/quarterly", summary="Actual, forecast and prior year by quarter")
def forecast_quarterly(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.forecast_quarterly(filters)


@router.get("/forecast/regional", summary="Regional performance")
def forecast_regional(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.forecast_regional(filters)


@router.get("/forecast/trend", summary="Cumulative monthly forecast vs prior year")
def forecast_trend(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.forecast_trend(filters)


@router.get("/forecast/subcategories", summary="Weighted forecast by sub-category")
def forecast_subcategories(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.forecast_by_subcategory(filters)


@router.get("/monte-carlo", summary="Monte Carlo simulation of the open pipeline")
def monte_carlo(
    params: MonteCarloParams = Depends(query_filters(MonteCarloParams)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.monte_carlo(params)


@router.get("/pipeline/movement", summary="Month-over-month pipeline waterfall")
def pipeline_movement(
    filters: PipelineMovementFilters = Depends(query_filters(PipelineMovementFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.pipeline_movement(filters)


@router.get("/pipeline/subcategories", summary="Open pipeline by sub-category")
def pipeline_subcategories(
    filters: SalesFilters = Depends(query_filters(SalesFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.pipeline_by_subcategory(filters)


@router.get("/quota", summary="Sales rep performance hierarchy")
def quota(
    filters: QuotaFilters = Depends(query_filters(QuotaFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.quota_salespeople(filters)


@router.get("/quota/heatmap", summary="Monthly attainment heatmap")
def quota_heatmap(
    filters: QuotaFilters = Depends(query_filters(QuotaFilters)),
    compute: SalesCompute = Depends(get_sales_compute),
) -> dict:
    return compute.monthly_attainment_heatmap(filters)
