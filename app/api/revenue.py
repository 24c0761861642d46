# =============================================================================
# Revenue API — ARR Analytics Endpoints
# =============================================================================
#
# Thin wrappers over RevenueCompute for the tenant of the calling key.
# Responses are the compute dicts unchanged, so a dashboard and the ARR
# agent's tools always see identical numbers. Handlers are plain `def` so
# FastAPI runs the CPU-bound computations in its threadpool.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import check_scope, get_current_api_key, query_filters, tenant_slug_for
from app.db.models import ApiKey
from app.models.filters import (
    CustomerListFilters,
    CustomerMovementFilters,
    MovementFilters,
    ProductFilters,
    RevenueFilters,
)
from app.services.auth import SCOPE_ANALYTICS
from app.services.data_store import get_data_store
from app.services.revenue_compute import RevenueCompute

router = APIRouter(prefix="/revenue", tags=["Revenue Analytics"])


def get_revenue_compute(
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> RevenueCompute:
    check_scope(api_key, SCOPE_ANALYTICS)
    return RevenueCompute(get_data_store(tenant_slug_for(api_key)))


@router.get("/overview", summary="ARR KPI cards")
def overview(
    filters: RevenueFilters = Depends(query_filters(RevenueFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.overview_metrics(filters)


@router.get("/trend", summary="Monthly actual and forecast ARR")
def trend(
    filters: RevenueFilters = Depends(query_filters(RevenueFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.arr_trend(filters)


@router.get("/by-dimension", summary="ARR by region, vertical and category")
def by_dimension(
    filters: RevenueFilters = Depends(query_filters(RevenueFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.arr_by_dimension(filters)


@router.get("/movement/summary", summary="ARR bridge over a lookback period")
def movement_summary(
    filters: MovementFilters = Depends(query_filters(MovementFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.movement_summary(filters)


@router.get("/movement/customers", summary="Customer-level ARR movements")
def movement_customers(
    filters: CustomerMovementFilters = Depends(query_filters(CustomerMovementFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.movement_customers(filters)


@router.get("/movement/trend", summary="Monthly ARR movements")
def movement_trend(
    filters: RevenueFilters = Depends(query_filters(RevenueFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.movement_trend(filters)


@router.get("/customers", summary="Customer list with SOW details")
def customers(
    filters: CustomerListFilters = Depends(query_filters(CustomerListFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.customers_list(filters)


@router.get("/renewal-risk", summary="Renewal risk distribution and calendar")
def renewal_risk(
    filters: RevenueFilters = Depends(query_filters(RevenueFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.renewal_risk(filters)


@router.get("/products", summary="Sub-category performance")
def products(
    filters: ProductFilters = Depends(query_filters(ProductFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.products(filters)


@router.get("/products/categories", summary="Category rollup and KPI cards")
def product_categories(
    filters: ProductFilters = Depends(query_filters(ProductFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.category_summary(filters)


@router.get("/products/matrix", summary="Customer x category ARR matrix")
def product_matrix(
    filters: ProductFilters = Depends(query_filters(ProductFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.customer_category_matrix(filters)


@router.get("/products/cross-sell", summary="Cross-sell distribution")
def cross_sell(
    filters: ProductFilters = Depends(query_filters(ProductFilters)),
    compute: RevenueCompute = Depends(get_revenue_compute),
) -> dict:
    return compute.cross_sell_analysis(filters)
