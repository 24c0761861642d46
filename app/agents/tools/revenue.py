# =============================================================================
# ARR Agent Tools — One Set per Revenue Dashboard Tab
# =============================================================================
#
# Each tool wraps one RevenueCompute operation, so the agent reports exactly
# the figures the matching dashboard tab shows. Descriptions are written for
# the model: they name the visual the data backs and when to pick the tool.
# =============================================================================

from __future__ import annotations

from app.agents.tools.base import AgentTool, truncated_list
from app.models.filters import (
    CustomerListFilters,
    CustomerMovementFilters,
    MovementFilters,
    ProductFilters,
    RevenueFilters,
)
from app.services.revenue_compute import RevenueCompute


def create_arr_tools(compute: RevenueCompute) -> dict[str, list[AgentTool]]:
    """Tools keyed by ARR tab: overview, movement, customers, products."""
    overview = [
        AgentTool(
            name="get_arr_overview_metrics",
            description=(
                "Get full ARR Overview KPI cards: Current ARR, Year-End Forecasted ARR, "
                "Month Forecast, Monthly NRR %, Monthly GRR %, Full-Year NRR, Full-Year GRR, "
                "expansion, contraction, churn, schedule change. Matches exactly what the "
                "user sees on the Revenue Overview tab."
            ),
            args_model=RevenueFilters,
            func=compute.overview_metrics,
        ),
        AgentTool(
            name="get_arr_trend",
            description=(
                "Get ARR Trend over time: month-by-month actual and forecasted ARR from "
                "Jan 2024 to Dec 2026. Forecast months show base + renewals + new business "
                "breakdown."
            ),
            args_model=RevenueFilters,
            func=compute.arr_trend,
        ),
        AgentTool(
            name="get_arr_by_dimension",
            description=(
                "Get ARR breakdown by region, vertical, and product category. Returns three "
                "lists sorted by ARR descending."
            ),
            args_model=RevenueFilters,
            func=compute.arr_by_dimension,
        ),
    ]

    movement = [
        AgentTool(
            name="get_movement_summary",
            description=(
                "Get ARR Movement summary with waterfall: Starting ARR, New Business, "
                "Expansion, Schedule Change, Contraction, Churn, Ending ARR. Matches the ARR "
                "Bridge Waterfall chart and summary cards on the ARR Movement tab."
            ),
            args_model=MovementFilters,
            func=compute.movement_summary,
        ),
        AgentTool(
            name="get_movement_customers",
            description=(
                "Get CUSTOMER-LEVEL ARR movement details: each customer's name, starting "
                "ARR, ending ARR, new business, expansion, contraction, churn amounts, and "
                '% change. Use this to answer "which customers expanded/contracted/churned?" '
                "Filter by movementType to get only one kind of mover. Results sorted by "
                "absolute change (largest movers first)."
            ),
            args_model=CustomerMovementFilters,
            func=lambda f: truncated_list(compute.movement_customers(f)["customers"]),
        ),
        AgentTool(
            name="get_movement_trend",
            description=(
                "Get monthly ARR movement trend from Jan 2024 to present: for each month, "
                "new business, expansion, schedule change, contraction, churn, and net "
                "change amounts."
            ),
            args_model=RevenueFilters,
            func=compute.movement_trend,
        ),
    ]

    customers = [
        AgentTool(
            name="get_customers_list",
            description=(
                "Get full customer list with ARR, region, vertical, SOW count, earliest "
                "renewal date, renewal risk, and SOW details (SOW ID, name, ARR, fees type, "
                'contract end, risk). Use for "list all customers", "which customers have '
                'renewals coming up", "search for customer X", or "top customers by ARR". '
                "Results sorted by ARR descending by default."
            ),
            args_model=CustomerListFilters,
            func=lambda f: truncated_list(compute.customers_list(f)["customers"]),
        ),
        AgentTool(
            name="get_renewal_risk",
            description=(
                "Get 2026 Renewal Risk Distribution (Win/PO, In Process, Mgmt Approval, "
                "High Risk, Lost counts) and Renewal Calendar (month-by-month SOW count and "
                "ARR for 2026 renewals)."
            ),
            args_model=RevenueFilters,
            func=compute.renewal_risk,
        ),
    ]

    products = [
        AgentTool(
            name="get_products",
            description=(
                "Get Product sub-category performance: sub-category name, parent category, "
                "total ARR, customer count, avg ARR per customer. Use get_category_summary "
                "for category-level rollups and KPIs."
            ),
            args_model=ProductFilters,
            func=compute.products,
        ),
        AgentTool(
            name="get_category_summary",
            description=(
                "Get category-level rollup with KPIs: each category's total ARR, customer "
                "count, sub-category count, avg ARR/customer. Also returns Total Categories, "
                "Top Category (name + ARR), Total Sub-Categories and Most Adopted category."
            ),
            args_model=ProductFilters,
            func=compute.category_summary,
        ),
        AgentTool(
            name="get_customer_category_matrix",
            description=(
                "Get the Customer x Category ARR matrix: each customer's name, region, "
                "vertical, total ARR, and ARR by product category, with SOW-level details. "
                "Supports customer name search. Max 50 customers returned."
            ),
            args_model=ProductFilters,
            func=compute.customer_category_matrix,
        ),
        AgentTool(
            name="get_cross_sell_analysis",
            description=(
                "Get Cross-Sell Analysis: distribution of customers by number of "
                "sub-categories used (1, 2, 3+), cross-sell rate %, and category performance "
                "(customer count, total ARR, avg ARR/customer)."
            ),
            args_model=ProductFilters,
            func=compute.cross_sell_analysis,
        ),
    ]

    return {
        "overview": overview,
        "movement": movement,
        "customers": customers,
        "products": products,
    }
