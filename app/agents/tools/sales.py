# =============================================================================
# Sales Agent Tools — One Set per Sales Dashboard Tab
# =============================================================================

from __future__ import annotations

from app.agents.tools.base import AgentTool, truncated_list
from app.models.filters import (
    KeyDealsFilters,
    MonteCarloParams,
    PipelineMovementFilters,
    QuotaFilters,
    SalesFilters,
)
from app.services.sales_compute import SalesCompute


def create_sales_tools(compute: SalesCompute) -> dict[str, list[AgentTool]]:
    """Tools keyed by sales tab: overview, forecast, pipeline, yoy."""
    overview = [
        AgentTool(
            name="get_overview_kpis",
            description=(
                "Get Sales Overview KPI cards: Closed ACV, Weighted Pipeline ACV, Forecast "
                "ACV, YoY Growth %, Conversion Rate, Avg Deal Size, Sales Cycle days. Matches "
                "exactly what the user sees on the Overview tab KPI cards."
            ),
            args_model=SalesFilters,
            func=compute.overview_metrics,
        ),
        AgentTool(
            name="get_overview_funnel",
            description=(
                "Get the Sales Funnel chart data: deal count and value by pipeline stage "
                "(Prospecting, Qualification, Proposal, Negotiation)."
            ),
            args_model=SalesFilters,
            func=compute.overview_funnel,
        ),
        AgentTool(
            name="get_overview_key_deals",
            description=(
                "Get the Key Deals in Pipeline table: top active deals with Deal Name, "
                "Account, Unweighted Fee (unweightedValue), Unweighted License ACV "
                "(unweightedLicenseValue), Unweighted Implementation Value "
                "(unweightedImplementationValue), Stage, Close Date, Probability, Owner. "
                "Deals with $0 value for the selected revenueType are excluded. When the user "
                'asks about license values, pass revenueType="License". Values are UNWEIGHTED '
                "(raw deal value before probability adjustment)."
            ),
            args_model=KeyDealsFilters,
            func=compute.overview_key_deals,
        ),
        AgentTool(
            name="get_overview_closed_deals",
            description=(
                "Get the Closed ACV Deals table: Deal Name, Account, Logo Type, License ACV, "
                "Implementation ACV, SOW ID, Close Date, with sub-category breakdown per deal."
            ),
            args_model=SalesFilters,
            func=lambda f: truncated_list(compute.overview_closed_deals(f)["deals"]),
        ),
        AgentTool(
            name="get_forecast_by_quarter",
            description=(
                "Get Forecast by Quarter chart data: Actual, Forecast and Previous Year for "
                "Q1-Q4."
            ),
            args_model=SalesFilters,
            func=compute.forecast_quarterly,
        ),
        AgentTool(
            name="get_at_risk_deals",
            description=(
                "Get open pipeline deals at risk (stalled, or probability 25% or lower), "
                "with their count and total unweighted value."
            ),
            args_model=SalesFilters,
            func=compute.at_risk_deals,
        ),
    ]

    forecast = [
        AgentTool(
            name="get_regional_performance",
            description=(
                "Get Regional Performance table: Region, Closed ACV, Forecast, Previous Year, "
                "Variance, YoY Growth % for North America, Europe, LATAM, Middle East, APAC."
            ),
            args_model=SalesFilters,
            func=compute.forecast_regional,
        ),
        AgentTool(
            name="get_forecast_trend",
            description=(
                "Get Forecast Trend line chart data: cumulative monthly forecast vs previous "
                "year (Jan-Dec)."
            ),
            args_model=SalesFilters,
            func=compute.forecast_trend,
        ),
        AgentTool(
            name="get_forecast_by_subcategory",
            description=(
                "Get Forecast by Sub-Category table: Sub-Category, Category, Weighted "
                "Forecast, % of Total, Deal count."
            ),
            args_model=SalesFilters,
            func=compute.forecast_by_subcategory,
        ),
        AgentTool(
            name="run_monte_carlo",
            description=(
                "Run a Monte Carlo simulation on the current pipeline to get the probability "
                "distribution of forecast outcomes: mean, median, standard deviation and "
                "percentiles (p10, p25, p75, p90)."
            ),
            args_model=MonteCarloParams,
            func=compute.monte_carlo,
        ),
    ]

    pipeline = [
        AgentTool(
            name="get_pipeline_movement",
            description=(
                "Get Pipeline Movement analysis: Starting Pipeline, New Deals Added, Value "
                "Increased, Value Decreased, Closed Won, Lost Deals, Ending Pipeline, with "
                "waterfall data and all deal details. This single tool provides ALL data for "
                "the Pipeline Movement tab."
            ),
            args_model=PipelineMovementFilters,
            func=compute.pipeline_movement,
        ),
        AgentTool(
            name="get_pipeline_by_subcategory",
            description=(
                "Get Pipeline by Sub-Category: pipeline value, weighted value, deal count, "
                "and category for each product sub-category."
            ),
            args_model=SalesFilters,
            func=compute.pipeline_by_subcategory,
        ),
    ]

    yoy = [
        AgentTool(
            name="get_sales_rep_performance",
            description=(
                "Get Sales Rep Performance table: Salesperson, Region, Closed YTD, Forecast, "
                "Pipeline, Previous Year, Pipeline Coverage (multiplier), Forecast attainment. "
                "Managers show rollup totals including their reports."
            ),
            args_model=QuotaFilters,
            func=compute.quota_salespeople,
        ),
        AgentTool(
            name="get_monthly_attainment_heatmap",
            description=(
                "Get the Monthly Attainment Heatmap: a Rep x Month grid of attainment "
                "percentages, color-coded (Green >=100%, Yellow 75-99%, Red <75%, Gray no data)."
            ),
            args_model=QuotaFilters,
            func=compute.monthly_attainment_heatmap,
        ),
    ]

    return {
        "overview": overview,
        "forecast": forecast,
        "pipeline": pipeline,
        "yoy": yoy,
    }
