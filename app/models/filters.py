# =============================================================================
# Analytics Filter Models — Pydantic V2 Schemas
# =============================================================================
#
# One set of filter models serves three callers:
# 1. The analytics services (typed attribute access)
# 2. The REST endpoints (built from query parameters)
# 3. The agent tools (their JSON Schema is what the LLM sees)
#
# DESIGN DECISION: snake_case attributes, camelCase aliases.
# The LLM tool schemas and the query strings use the camelCase names the
# dashboards already use (quantumSmart, lookbackPeriod, ...). Python code
# uses snake_case. `populate_by_name=True` accepts either spelling.
#
# DESIGN DECISION: Empty values mean "no filter".
# LLMs frequently send "" or [] for filters they do not need. A
# before-validator turns those into None, so the services never have to
# tell an empty filter apart from a missing one.
# =============================================================================

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

_REGIONS_HINT = "North America, Europe, LATAM, Middle East, APAC"

Quarter = Literal["Q1", "Q2", "Q3", "Q4"]


class _Filters(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_empty(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v not in ("", [], None)}
        return data


# ---------------------------------------------------------------------------
# ARR / Revenue
# ---------------------------------------------------------------------------


class RevenueFilters(_Filters):
    year: list[str] | None = Field(
        default=None, description='Filter by year(s), e.g. ["2026"]'
    )
    month: list[str] | None = Field(
        default=None, description='Filter by month name(s), e.g. ["Jan","Dec"]'
    )
    region: list[str] | None = Field(
        default=None, description=f"Filter by region(s): {_REGIONS_HINT}"
    )
    vertical: list[str] | None = Field(default=None, description="Filter by vertical(s)")
    segment: list[str] | None = Field(
        default=None, description="Filter by segment(s): Enterprise, SMB"
    )
    platform: list[str] | None = Field(
        default=None,
        description="Filter by platform(s): Quantum, SMART, Cost Drivers, Opus",
    )
    quantum_smart: str | None = Field(
        default=None,
        alias="quantumSmart",
        description="Single select: Quantum, SMART, or All",
    )


class MovementFilters(RevenueFilters):
    lookback_period: int = Field(
        default=1,
        ge=1,
        le=36,
        alias="lookbackPeriod",
        description="Lookback period in months (1, 3, 6, or 12). Default 1.",
    )


class CustomerMovementFilters(MovementFilters):
    movement_type: str | None = Field(
        default=None,
        alias="movementType",
        description=(
            'Filter by movement type: "Expansion", "Contraction", "Churn", '
            '"New Business", "Schedule Change". Omit for all movement types.'
        ),
    )
    sort_field: str | None = Field(
        default=None,
        alias="sortField",
        description=(
            "Sort by field: customerName, startingARR, endingARR, expansion, "
            "contraction, churn, change, changePercent"
        ),
    )
    sort_direction: str | None = Field(
        default=None,
        alias="sortDirection",
        description="Sort direction: asc or desc (default: desc by absolute change)",
    )


class CustomerListFilters(RevenueFilters):
    search: str | None = Field(
        default=None, description="Search by customer name (partial match)"
    )
    renewals_2026: bool | None = Field(
        default=None,
        alias="renewals2026",
        description="Set true to show only customers with 2026 renewals",
    )
    renewal_risk: str | None = Field(
        default=None,
        alias="renewalRisk",
        description=(
            'Filter by renewal risk: "High Risk", "Lost", "Mgmt Approval", '
            '"In Process", "Win/PO"'
        ),
    )
    sort_field: str | None = Field(
        default=None,
        alias="sortField",
        description="Sort by: customerName, totalARR, sowCount, earliestRenewalDate",
    )
    sort_direction: str | None = Field(
        default=None, alias="sortDirection", description="Sort direction: asc or desc"
    )


class ProductFilters(RevenueFilters):
    fees_type: str | None = Field(
        default=None,
        alias="feesType",
        description="Filter by fees type: Fees, Travel, or All",
    )
    product_category: str | None = Field(
        default=None, alias="productCategory", description="Filter by product category"
    )
    product_sub_category: str | None = Field(
        default=None,
        alias="productSubCategory",
        description="Filter by product sub-category",
    )
    search: str | None = Field(
        default=None, description="Search by customer name (partial match)"
    )


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


class SalesFilters(_Filters):
    year: list[str] | None = Field(
        default=None, description='Filter by year(s), e.g. ["2026"]'
    )
    quarter: list[Quarter] | None = Field(
        default=None, description='Filter by quarter(s), e.g. ["Q1","Q2"]'
    )
    month: list[str] | None = Field(
        default=None, description='Filter by month name(s), e.g. ["Jan","Feb"]'
    )
    region: list[str] | None = Field(
        default=None, description=f"Filter by region(s): {_REGIONS_HINT}"
    )
    vertical: list[str] | None = Field(
        default=None,
        description="Filter by vertical(s): Life Sciences, CPG & Retail, BFSI, etc.",
    )
    segment: list[str] | None = Field(
        default=None, description="Filter by segment(s): Enterprise, SMB"
    )
    logo_type: list[str] | None = Field(
        default=None,
        alias="logoType",
        description="Filter by logo type(s): New Logo, Upsell, Cross-Sell, Extension",
    )
    sold_by: str | None = Field(
        default=None, alias="soldBy", description="Sold by: Sales, GD, TSO, or All"
    )
    revenue_type: str | None = Field(
        default=None,
        alias="revenueType",
        description="Revenue type: License, Implementation, or All (default All)",
    )
    product_category: list[str] | None = Field(
        default=None, alias="productCategory", description="Filter by product category"
    )
    product_sub_category: list[str] | None = Field(
        default=None,
        alias="productSubCategory",
        description="Filter by product sub-category",
    )


class KeyDealsFilters(SalesFilters):
    sort_field: str | None = Field(
        default=None, alias="sortField", description="Field to sort by"
    )
    sort_direction: str | None = Field(
        default=None, alias="sortDirection", description="asc or desc"
    )
    limit: int = Field(
        default=10, ge=1, le=50, description="Max deals to return (default 10)"
    )


class PipelineMovementFilters(SalesFilters):
    target_month: str | None = Field(
        default=None,
        alias="targetMonth",
        pattern=r"^\d{4}-\d{2}$",
        description="Target month in YYYY-MM format for movement comparison",
    )
    lookback_months: int = Field(
        default=1,
        ge=1,
        le=24,
        alias="lookbackMonths",
        description="Compare against the snapshot this many months back (default 1)",
    )


class QuotaFilters(SalesFilters):
    name_filter: str | None = Field(
        default=None, alias="nameFilter", description="Search by salesperson name"
    )
    region_filter: str | None = Field(
        default=None, alias="regionFilter", description="Filter by specific region"
    )
    sort_field: str | None = Field(
        default=None,
        alias="sortField",
        description="Field to sort by (e.g. closedYTD, forecastAttainment)",
    )
    sort_direction: str | None = Field(
        default=None, alias="sortDirection", description="asc or desc"
    )


class MonteCarloParams(SalesFilters):
    iterations: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Number of simulation iterations (default 1000)",
    )
    seed: int | None = Field(
        default=None, description="Random seed for a reproducible simulation"
    )
