# =============================================================================
# Unit Tests — Sales Analytics (SalesCompute)
# =============================================================================
#
# Opportunities built from tests/fixtures/data (today = 2026-03-15):
#
#   Won (closed_acv)   C1 Zeta   Jan 26  New Logo   25k lic + 5k impl  Alice
#                      C2 Acme   Feb 26  Extension  50k lic            Alice
#                      C3 Beta   Mar 25  Upsell     40k lic            Bob
#                      C4 Gamma  Nov 25  Cross-Sell 15k lic + 5k impl  Carol
#   Open (Feb snapshot) P1 Upsell 60k weighted @50%   Jun 26  Alice
#                      P2 Renewal 60k @75%           Mar 26  Bob
#                      P3 Stalled 20k @10%           Sep 26  Alice
#                      P4 Cross-Sell 12k @25%        Dec 26  Carol
#   Lost               P6 6k @20%                    Apr 26  Bob
# =============================================================================

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.models.filters import (
    KeyDealsFilters,
    MonteCarloParams,
    PipelineMovementFilters,
    QuotaFilters,
    SalesFilters,
)
from app.services.sales_compute import (
    SalesCompute,
    heatmap_color,
    logo_type_matches,
)

Y2026 = {"year": ["2026"]}


@pytest.fixture
def compute(store, today) -> SalesCompute:
    return SalesCompute(store, today=today)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestLogoTypeMatches:
    def test_no_filter_matches_everything(self):
        assert logo_type_matches("Upsell", None)

    def test_extension_and_renewal_interchangeable(self):
        assert logo_type_matches("Renewal", ["Extension"])
        assert logo_type_matches("Extension", ["Renewal"])

    def test_mismatch(self):
        assert not logo_type_matches("New Logo", ["Upsell", "Cross-Sell"])


class TestHeatmapColor:
    def test_bands(self):
        assert heatmap_color(120) == "green"
        assert heatmap_color(100) == "green"
        assert heatmap_color(80) == "yellow"
        assert heatmap_color(40) == "red"
        assert heatmap_color(0) == "gray"


class TestBuildOpportunities:
    def test_sources_combined(self, compute):
        opps = {o.id: o for o in compute.build_opportunities()}
        # P5 is Closed Won in the pipeline and comes in through closed_acv as C1
        assert set(opps) == {"C1", "C2", "C3", "C4", "P1", "P2", "P3", "P4", "P6"}
        assert opps["P3"].status == "Stalled"
        assert opps["P6"].status == "Lost"
        assert opps["P6"].probability == 0

    def test_won_deal_uses_sow_mapping(self, compute):
        zeta = next(o for o in compute.build_opportunities() if o.id == "C1")
        assert zeta.region == "North America"
        assert zeta.closed_acv == 30000
        assert zeta.product_category == "Platform"
        assert zeta.sub_category_breakdown == [
            {"subCategory": "Analytics Cloud", "category": "Platform", "pct": 100.0, "value": 30000}
        ]

    def test_renewal_license_not_counted_as_closed_acv(self, compute):
        acme = next(o for o in compute.build_opportunities() if o.id == "C2")
        assert acme.logo_type == "Extension"
        assert acme.sold_by == "GD"
        assert acme.closed_acv == 0


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------


class TestOverviewMetrics:
    def test_forecast_and_yoy(self, compute):
        result = compute.overview_metrics(SalesFilters(**Y2026))
        assert result["totalClosedACV"] == 80000
        # Renewal P2 is excluded from the forecast pipeline
        assert result["weightedPipelineACV"] == 92000
        assert result["forecastACV"] == 172000
        assert result["previousYearClosedACV"] == 60000
        assert result["previousYearForecastACV"] == 60000
        assert result["yoyGrowth"] == 186.7

    def test_conversion_and_cycle(self, compute):
        result = compute.overview_metrics(SalesFilters(**Y2026))
        # Lost value is unweighted: P3 20k/10% + P6 6k/20%
        assert result["conversionRate"] == 25.8
        assert result["avgDealSize"] == 40000
        assert result["avgSalesCycle"] == 119

    def test_counts_and_splits(self, compute):
        result = compute.overview_metrics(SalesFilters(**Y2026))
        assert result["closedWonCount"] == 2
        assert result["closedLostCount"] == 1
        assert result["activeDealsCount"] == 4
        assert result["newBusinessLicenseACV"] == 25000
        assert result["implementationACV"] == 5000
        assert result["extensionRenewalLicense"] == 50000
        assert result["totalPipelineValue"] == 420000

    def test_license_revenue_type(self, compute):
        result = compute.overview_metrics(SalesFilters(revenueType="License", **Y2026))
        assert result["totalClosedACV"] == 75000

    def test_sold_by_filter(self, compute):
        result = compute.overview_metrics(SalesFilters(soldBy="GD", **Y2026))
        assert result["totalClosedACV"] == 50000
        assert result["weightedPipelineACV"] == 0


class TestFunnel:
    def test_open_stages_by_value(self, compute):
        stages = compute.overview_funnel(SalesFilters(**Y2026))["stages"]
        assert stages == [
            {"stage": "Stage 3", "count": 1, "value": 60000},
            {"stage": "Stage 5", "count": 1, "value": 60000},
            {"stage": "Stage 2", "count": 1, "value": 20000},
            {"stage": "Stage 1", "count": 1, "value": 12000},
        ]


class TestKeyDeals:
    def test_active_deals_by_unweighted_value(self, compute):
        deals = compute.overview_key_deals(KeyDealsFilters(**Y2026))["deals"]
        assert [(d["id"], d["unweightedValue"]) for d in deals] == [
            ("P1", 120000), ("P2", 80000), ("P4", 48000),
        ]
        assert deals[0]["unweightedLicenseValue"] == 100000

    def test_limit(self, compute):
        deals = compute.overview_key_deals(KeyDealsFilters(limit=1, **Y2026))["deals"]
        assert [d["id"] for d in deals] == ["P1"]

    def test_sort_field(self, compute):
        deals = compute.overview_key_deals(
            KeyDealsFilters(sortField="probability", sortDirection="asc", **Y2026)
        )["deals"]
        assert [d["id"] for d in deals] == ["P4", "P1", "P2"]


class TestClosedDeals:
    def test_only_won_in_period(self, compute):
        deals = compute.overview_closed_deals(SalesFilters(**Y2026))["deals"]
        assert [d["id"] for d in deals] == ["C1", "C2"]
        assert deals[0]["closedACV"] == 30000
        assert deals[0]["sowId"] == "308157000000"


class TestAtRisk:
    def test_stalled_and_low_probability(self, compute):
        result = compute.at_risk_deals(SalesFilters(**Y2026))
        assert result["count"] == 2
        assert result["totalValue"] == 248000
        assert [(d["id"], d["riskReason"]) for d in result["deals"]] == [
            ("P3", "Stalled"), ("P4", "Low probability"),
        ]


# ---------------------------------------------------------------------------
# Forecast
# ---------------------------------------------------------------------------


class TestForecast:
    def test_quarterly(self, compute):
        quarters = compute.forecast_quarterly(SalesFilters(**Y2026))["quarters"]
        assert quarters == [
            {"quarter": "Q1", "forecast": 80000, "actual": 80000, "previousYear": 40000},
            {"quarter": "Q2", "forecast": 60000, "actual": 0, "previousYear": 0},
            {"quarter": "Q3", "forecast": 20000, "actual": 0, "previousYear": 0},
            {"quarter": "Q4", "forecast": 12000, "actual": 0, "previousYear": 20000},
        ]

    def test_regional(self, compute):
        regions = {r["region"]: r for r in compute.forecast_regional(SalesFilters(**Y2026))["regions"]}
        assert list(regions) == ["North America", "Europe", "LATAM", "Middle East", "APAC"]

        na = regions["North America"]
        assert (na["forecast"], na["closedACV"], na["previousYearACV"], na["yoyGrowth"]) == (
            160000, 80000, 0, 0,
        )
        assert regions["Europe"]["forecast"] == 0
        assert regions["Europe"]["variance"] == -40000
        assert regions["APAC"]["forecast"] == 12000
        assert regions["APAC"]["previousYearACV"] == 20000
        assert regions["APAC"]["yoyGrowth"] == -40

    def test_trend_is_cumulative(self, compute):
        months = compute.forecast_trend(SalesFilters(**Y2026))["months"]
        assert months[0]["cumulativeForecast"] == 30000
        assert months[1]["cumulativeForecast"] == 80000
        assert months[11]["cumulativeForecast"] == 172000
        assert months[11]["cumulativePreviousYear"] == 60000
        assert months[5]["monthlyPipeline"] == 60000

    def test_by_subcategory(self, compute):
        rows = compute.forecast_by_subcategory(SalesFilters(**Y2026))["subcategories"]
        assert [(r["subCategory"], r["weightedForecast"], r["dealCount"]) for r in rows] == [
            ("Analytics Cloud", 80000, 2),
            ("Forecasting Suite", 72000, 2),
        ]
        assert rows[0]["percentOfTotal"] == 52.6


class TestMonteCarlo:
    def test_seeded_runs_are_reproducible(self, compute):
        params = MonteCarloParams(iterations=500, seed=42, **Y2026)
        assert compute.monte_carlo(params) == compute.monte_carlo(params)

    def test_bounds_and_ordering(self, compute):
        result = compute.monte_carlo(MonteCarloParams(iterations=2000, seed=7, **Y2026))
        assert result["dealCount"] == 4
        assert result["iterations"] == 2000
        p = result["percentiles"]
        # 448k is every open deal closing at its unweighted value
        assert 0 <= p["p10"] <= p["p25"] <= result["median"] <= p["p75"] <= p["p90"] <= 448000

    def test_no_open_deals(self, compute):
        result = compute.monte_carlo(MonteCarloParams(iterations=10, seed=1, year=["2019"]))
        assert result["dealCount"] == 0
        assert result["mean"] == 0
        assert result["percentiles"]["p90"] == 0


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestPipelineMovement:
    def test_month_over_month(self, compute):
        result = compute.pipeline_movement(PipelineMovementFilters())
        assert (result["prevLabel"], result["currLabel"]) == ("Jan'26", "Feb'26")
        assert result["startingPipeline"] == 155000
        assert result["endingPipeline"] == 158000
        assert result["totalChange"] == 3000
        assert result["newDeals"] == {"count": 2, "value": 18000}
        assert result["increased"] == {"count": 1, "value": 10000}
        assert result["decreased"] == {"count": 0, "value": 0}
        assert result["won"] == {"count": 1, "value": 25000}
        assert result["lost"] == {"count": 0, "value": 0}

    def test_waterfall_ends_on_current_pipeline(self, compute):
        waterfall = compute.pipeline_movement(PipelineMovementFilters())["waterfall"]
        assert waterfall[0]["name"] == "Jan'26\nPipeline"
        assert waterfall[-1] == {
            "name": "Feb'26\nPipeline", "bottom": 0, "value": 158000,
            "displayValue": 158000, "fill": "#6b7280", "type": "final",
        }

    def test_quarter_selects_last_month_of_quarter(self, compute):
        result = compute.pipeline_movement(PipelineMovementFilters(year=["2026"], quarter=["Q1"]))
        assert result["currLabel"] == "Feb'26"

    def test_unknown_quarter_rejected(self):
        with pytest.raises(ValidationError):
            PipelineMovementFilters(year=["2026"], quarter=["Quarter 1"])

    def test_first_snapshot_has_no_movement(self, compute):
        result = compute.pipeline_movement(PipelineMovementFilters(targetMonth="2026-01"))
        assert result["prevLabel"] == ""
        assert result["waterfall"] == []

    def test_by_subcategory(self, compute):
        rows = compute.pipeline_by_subcategory(SalesFilters(**Y2026))["subcategories"]
        assert rows == [
            {"subCategory": "Analytics Cloud", "category": "Platform",
             "pipelineValue": 300000, "weightedValue": 80000, "dealCount": 2},
            {"subCategory": "Forecasting Suite", "category": "Planning",
             "pipelineValue": 120000, "weightedValue": 72000, "dealCount": 2},
        ]


# ---------------------------------------------------------------------------
# Quota / YoY
# ---------------------------------------------------------------------------


class TestQuota:
    def test_team_hierarchy(self, compute):
        people = compute.quota_salespeople(QuotaFilters(**Y2026))["salespeople"]
        assert [(p["name"], p["level"]) for p in people] == [
            ("Dana Lee", 0), ("Alice Smith", 1), ("Bob Jones", 1), ("Carol White", 1),
        ]
        assert people[0]["isManager"] is True
        assert people[0]["managerId"] is None
        assert people[1]["managerId"] == "SR001"

    def test_rep_figures_use_license_value(self, compute):
        people = compute.quota_salespeople(QuotaFilters(**Y2026))["salespeople"]
        alice = people[1]
        assert alice["closedYTD"] == 75000
        assert alice["pipelineValue"] == 70000
        assert alice["forecast"] == 145000
        assert alice["quota"] == 400000
        assert alice["previousYearClosed"] == 300000
        assert alice["monthlyAttainment"][:3] == [100, 100, 0]

    def test_previous_year_falls_back_to_closed_deals(self, compute):
        people = compute.quota_salespeople(QuotaFilters(**Y2026))["salespeople"]
        carol = next(p for p in people if p["name"] == "Carol White")
        assert carol["previousYearClosed"] == 15000

    def test_manager_rollup(self, compute):
        dana = compute.quota_salespeople(QuotaFilters(**Y2026))["salespeople"][0]
        assert dana["closedYTD"] == 75000
        assert dana["forecast"] == 217000
        assert dana["pipelineValue"] == 142000
        assert dana["quota"] == 700000
        assert dana["forecastAttainment"] == 31.0

    def test_historical_year_from_prior_performance(self, compute):
        people = compute.quota_salespeople(QuotaFilters(year=["2025"]))["salespeople"]
        assert [p["id"] for p in people] == ["SR002", "SR003"]
        alice = people[0]
        assert alice["quota"] == 350000
        assert alice["closedYTD"] == 300000
        assert alice["monthlyAttainment"] == [86] * 12

    def test_name_filter(self, compute):
        people = compute.quota_salespeople(QuotaFilters(nameFilter="bob", **Y2026))["salespeople"]
        assert [p["name"] for p in people] == ["Bob Jones"]

    def test_heatmap(self, compute):
        result = compute.monthly_attainment_heatmap(QuotaFilters(year=["2025"]))
        alice = result["heatmap"][0]
        assert alice["avgAttainment"] == 86
        assert {m["color"] for m in alice["months"]} == {"yellow"}
        assert result["monthLabels"][0] == "Jan"
