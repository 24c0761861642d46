# =============================================================================
# Sales Analytics — Pipeline, Forecast, Quota, Simulation
# =============================================================================
#
# Builds one list of "opportunities" from two CSV sources and answers every
# sales dashboard question from it:
#
#   closed_acv.csv                → Won deals (one per closed ACV row)
#   monthly_pipeline_snapshot.csv → Active / Stalled / Lost deals, taken from
#                                   the newest snapshot month only
#
# Pipeline License_ACV and Implementation_Value are already probability
# weighted in the export. The "unweighted" value divides by probability.
#
# DESIGN DECISION: Renewals are not new ACV.
# Forecast pipeline (closed + weighted pipeline) excludes Renewal/Extension
# deals, and closedACV on a won deal counts license value only for New Logo,
# Upsell and Cross-Sell.
#
# DESIGN DECISION: revenueType is applied at read time.
# Every figure goes through closed_value() / pipeline_value(), so "License",
# "Implementation" and "All" share one code path.
# =============================================================================

from __future__ import annotations

import logging
import random
import statistics
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from app.models.filters import (
    KeyDealsFilters,
    MonteCarloParams,
    PipelineMovementFilters,
    QuotaFilters,
    SalesFilters,
)
from app.services.analytics_common import (
    COLORS,
    MONTH_NAMES,
    add_months,
    js_round,
    parse_iso,
    round1,
    round2,
    sort_rows,
)
from app.services.csv_parser import normalize_region
from app.services.data_store import DataStore, PipelineSnapshotRecord

logger = logging.getLogger(__name__)

REGIONS = ["North America", "Europe", "LATAM", "Middle East", "APAC"]
LICENSE_ACV_LOGO_TYPES = {"New Logo", "Upsell", "Cross-Sell"}
RENEWAL_LOGO_TYPES = {"Extension", "Renewal"}
SOLD_BY_VALUES = {"Sales", "GD", "TSO"}
LOST_STAGES = ("Closed Lost", "Closed Dead", "Closed Declined")
AT_RISK_PROBABILITY = 25


@dataclass
class Opportunity:
    id: str
    name: str
    account_name: str
    region: str
    vertical: str
    segment: str
    stage: str
    probability: float
    deal_value: float
    license_value: float
    implementation_value: float
    weighted_value: float
    expected_close_date: str
    owner: str
    status: str  # Active | Won | Lost | Stalled
    logo_type: str
    created_date: str
    closed_acv: float
    sold_by: str
    sow_id: str = ""
    product_sub_category: str = "Unallocated"
    product_category: str = "Unallocated"
    sub_category_breakdown: list[dict] = field(default_factory=list)
    revenue_type: str = "License"

    @property
    def is_open(self) -> bool:
        return self.status in ("Active", "Stalled")


def _normalized_logo(logo_type: str) -> str:
    return "Extension/Renewal" if logo_type in RENEWAL_LOGO_TYPES else logo_type


def logo_type_matches(logo_type: str, wanted: list[str] | None) -> bool:
    """Extension and Renewal are interchangeable in the logoType filter."""
    if not wanted:
        return True
    normalized = {_normalized_logo(w) for w in wanted}
    return _normalized_logo(logo_type) in normalized or logo_type in wanted


def _date_parts(value: str) -> tuple[str, str, str] | None:
    """(year, quarter, month name) of an ISO date, or None when unparseable."""
    parsed = parse_iso(value)
    if parsed is None:
        return None
    return (
        str(parsed.year),
        f"Q{(parsed.month - 1) // 3 + 1}",
        MONTH_NAMES[parsed.month - 1],
    )


def date_matches(value: str, filters: SalesFilters, check_year: bool = True) -> bool:
    if not (filters.year or filters.quarter or filters.month):
        return True
    parts = _date_parts(value)
    if parts is None:
        return False
    year, quarter, month = parts
    if check_year and filters.year and year not in filters.year:
        return False
    if filters.quarter and quarter not in filters.quarter:
        return False
    if filters.month and month not in filters.month:
        return False
    return True


def closed_value(opp: Opportunity, revenue_type: str | None) -> float:
    if revenue_type == "Implementation":
        return opp.implementation_value
    if revenue_type == "License":
        return opp.license_value
    return opp.license_value + opp.implementation_value


# Pipeline values are the same split; kept separate so callers read naturally.
pipeline_value = closed_value


def unweighted_value(opp: Opportunity, revenue_type: str | None) -> float:
    """Deal value before probability weighting. Zero-probability deals count as 100%."""
    prob = opp.probability / 100 if opp.probability > 0 else 1
    return closed_value(opp, revenue_type) / prob


class SalesCompute:
    """Sales analytics over one tenant's DataStore."""

    def __init__(self, store: DataStore, today: Callable[[], date] = date.today):
        self.store = store
        self._today = today

    @property
    def current_year(self) -> int:
        return self._today().year

    # -------------------------------------------------------------------------
    # Opportunity building
    # -------------------------------------------------------------------------

    def _category(self, sub_category: str) -> str:
        return self.store.product_category_index.get(sub_category, "Unallocated")

    def build_opportunities(self) -> list[Opportunity]:
        opps = [self._won(row) for row in self.store.closed_acv]

        snapshots = self.store.pipeline_snapshots
        if not snapshots:
            return opps
        latest = max(row.snapshot_month for row in snapshots)[:7]
        deals: dict[str, PipelineSnapshotRecord] = {}
        for row in snapshots:
            if row.snapshot_month[:7] == latest:
                deals[row.pipeline_deal_id] = row

        pip_index = 0
        for row in deals.values():
            if "Closed Won" in row.current_stage:
                continue
            if any(stage in row.current_stage for stage in LOST_STAGES):
                status = "Lost"
            elif "Stalled" in row.current_stage:
                status = "Stalled"
            else:
                status = "Active"

            deal_id = row.pipeline_deal_id
            if not deal_id:
                pip_index += 1
                deal_id = f"PIP-{pip_index:04d}"
            sub_category = row.product_sub_category or "Unallocated"

            opps.append(
                Opportunity(
                    id=deal_id,
                    name=row.deal_name,
                    account_name=row.customer_name,
                    region=row.region or "North America",
                    vertical=row.vertical or "Other Services",
                    segment="SMB" if row.segment == "SMB" else "Enterprise",
                    stage="Closed Lost" if status == "Lost" else (row.deal_stage or "Prospecting"),
                    probability=0 if status == "Lost" else row.probability,
                    deal_value=row.deal_value,
                    license_value=row.license_acv,
                    implementation_value=row.implementation_value,
                    weighted_value=row.license_acv + row.implementation_value,
                    expected_close_date=row.expected_close_date,
                    owner=row.sales_rep,
                    status=status,
                    logo_type=row.logo_type or "New Logo",
                    created_date=row.snapshot_month,
                    closed_acv=0,
                    sold_by="Sales",
                    product_sub_category=sub_category,
                    product_category=(
                        self._category(sub_category) if row.product_sub_category else "Unallocated"
                    ),
                )
            )
        return opps

    def _won(self, row) -> Opportunity:
        sow = self.store.sow_index.get(row.sow_id)
        region = (normalize_region(sow.region) if sow else "") or normalize_region(row.region)
        vertical = (sow.vertical if sow else "") or row.vertical
        segment = (sow.segment_type if sow else "") or row.segment or "Enterprise"

        total = row.license_acv + row.implementation_value
        license_counts = row.logo_type in LICENSE_ACV_LOGO_TYPES
        closed_acv = (row.license_acv if license_counts else 0) + row.implementation_value

        breakdown: list[dict] = []
        sub_category = category = "Unallocated"
        contributions = self.store.sub_categories_by_sow.get(row.sow_id, []) if row.sow_id else []
        if contributions:
            parsed = parse_iso(row.close_date)
            year = parsed.year if parsed else 2026
            for contribution in contributions:
                pct = contribution.pct_for_year(year)
                if pct <= 0:
                    continue
                breakdown.append({
                    "subCategory": contribution.product_sub_category,
                    "category": self._category(contribution.product_sub_category),
                    "pct": pct,
                    "value": js_round(closed_acv * pct / 100),
                })
            if breakdown:
                primary = max(breakdown, key=lambda b: b["pct"])
                sub_category = primary["subCategory"]
                category = self._category(sub_category)

        return Opportunity(
            id=row.closed_acv_id,
            name=row.deal_name,
            account_name=row.customer_name,
            region=region,
            vertical=vertical,
            segment="SMB" if segment == "SMB" else "Enterprise",
            stage="Closed Won",
            probability=100,
            deal_value=total or row.amount,
            license_value=row.license_acv,
            implementation_value=row.implementation_value,
            weighted_value=total or row.amount,
            expected_close_date=row.close_date,
            owner=row.sales_rep,
            status="Won",
            logo_type=row.logo_type or "Upsell",
            created_date=row.close_date,
            closed_acv=closed_acv,
            sold_by=row.sold_by if row.sold_by in SOLD_BY_VALUES else "Sales",
            sow_id=row.sow_id,
            product_sub_category=sub_category,
            product_category=category,
            sub_category_breakdown=breakdown,
            revenue_type=(sow.revenue_type if sow else "") or row.value_type or "License",
        )

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    @staticmethod
    def _dimensions_match(opp: Opportunity, filters: SalesFilters) -> bool:
        if filters.region and opp.region not in filters.region:
            return False
        if filters.vertical and opp.vertical not in filters.vertical:
            return False
        if filters.segment and opp.segment not in filters.segment:
            return False
        if not logo_type_matches(opp.logo_type, filters.logo_type):
            return False
        if filters.sold_by and filters.sold_by != "All" and opp.sold_by != filters.sold_by:
            return False
        if (
            filters.product_category
            and opp.product_category
            and opp.product_category not in filters.product_category
        ):
            return False
        if (
            filters.product_sub_category
            and opp.product_sub_category
            and opp.product_sub_category not in filters.product_sub_category
        ):
            return False
        return True

    def filter_opportunities(
        self, opps: list[Opportunity], filters: SalesFilters
    ) -> list[Opportunity]:
        return [
            o for o in opps
            if self._dimensions_match(o, filters) and date_matches(o.expected_close_date, filters)
        ]

    def previous_year_opportunities(
        self, opps: list[Opportunity], filters: SalesFilters
    ) -> list[Opportunity]:
        """Same filters with every selected year shifted back one."""
        years = [int(y) for y in filters.year] if filters.year else [self.current_year]
        previous = {str(y - 1) for y in years}
        result = []
        for o in opps:
            parts = _date_parts(o.expected_close_date)
            if parts is None or parts[0] not in previous:
                continue
            if self._dimensions_match(o, filters) and date_matches(
                o.expected_close_date, filters, check_year=False
            ):
                result.append(o)
        return result

    def _filtered(self, filters: SalesFilters) -> tuple[list[Opportunity], list[Opportunity]]:
        opps = self.build_opportunities()
        return self.filter_opportunities(opps, filters), self.previous_year_opportunities(opps, filters)

    @staticmethod
    def _forecast_parts(opps: list[Opportunity], rt: str | None) -> tuple[float, float]:
        """(closed won value, weighted non-renewal pipeline value)."""
        closed = sum(closed_value(o, rt) for o in opps if o.status == "Won")
        pipeline = sum(
            pipeline_value(o, rt)
            for o in opps
            if o.is_open and o.logo_type not in RENEWAL_LOGO_TYPES
        )
        return closed, pipeline

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    def overview_metrics(self, filters: SalesFilters) -> dict:
        filtered, prev_year = self._filtered(filters)
        rt = filters.revenue_type or "All"

        closed_won = [o for o in filtered if o.status == "Won"]
        closed_lost = [o for o in filtered if o.status == "Lost"]
        active = [o for o in filtered if o.is_open]

        total_closed, weighted_pipeline = self._forecast_parts(filtered, rt)
        forecast = total_closed + weighted_pipeline
        prev_closed, prev_pipeline = self._forecast_parts(prev_year, rt)
        prev_forecast = prev_closed + prev_pipeline
        yoy_growth = (forecast - prev_forecast) / prev_forecast * 100 if prev_forecast > 0 else 0

        lost_value = self._lost_value(filters, rt)
        conversion_rate = (
            total_closed / (total_closed + lost_value) * 100
            if total_closed + lost_value > 0 else 0
        )
        with_value = [o for o in closed_won if closed_value(o, rt) > 0]

        return {
            "totalClosedACV": js_round(total_closed),
            "weightedPipelineACV": js_round(weighted_pipeline),
            "forecastACV": js_round(forecast),
            "previousYearClosedACV": js_round(prev_closed),
            "previousYearForecastACV": js_round(prev_forecast),
            "yoyGrowth": round1(yoy_growth),
            "conversionRate": round1(conversion_rate),
            "avgDealSize": js_round(total_closed / len(with_value)) if with_value else 0,
            "avgSalesCycle": js_round(self._avg_sales_cycle(filters, rt)),
            "closedWonCount": len(closed_won),
            "closedLostCount": len(closed_lost),
            "activeDealsCount": len(active),
            "newBusinessLicenseACV": js_round(
                sum(o.license_value for o in closed_won if o.logo_type in LICENSE_ACV_LOGO_TYPES)
            ),
            "implementationACV": js_round(sum(o.implementation_value for o in closed_won)),
            "extensionRenewalLicense": js_round(
                sum(o.license_value for o in closed_won if o.logo_type in RENEWAL_LOGO_TYPES)
            ),
            "totalPipelineValue": js_round(sum(o.deal_value for o in active)),
        }

    def _lost_value(self, filters: SalesFilters, rt: str) -> float:
        """
        Unweighted value of lost deals across every snapshot.

        Lost deals drop out of later snapshots, so all months are scanned and
        each deal's last lost-stage row wins. Stalled counts as lost here.
        """
        lost: dict[str, float] = {}
        for s in self.store.pipeline_snapshots:
            if not (any(st in s.current_stage for st in LOST_STAGES) or "Stalled" in s.current_stage):
                continue
            if not date_matches(s.expected_close_date, filters):
                continue
            if filters.region and s.region not in filters.region:
                continue
            if filters.vertical and s.vertical not in filters.vertical:
                continue
            if filters.segment and s.segment not in filters.segment:
                continue
            if not logo_type_matches(s.logo_type.strip(), filters.logo_type):
                continue
            prob = s.probability / 100 if s.probability > 0 else 0
            if prob == 0:
                value = 0.0
            elif rt == "Implementation":
                value = s.implementation_value / prob
            elif rt == "License":
                value = s.license_acv / prob
            else:
                value = (s.license_acv + s.implementation_value) / prob
            lost[s.pipeline_deal_id] = value
        return sum(lost.values())

    def _avg_sales_cycle(self, filters: SalesFilters, rt: str) -> float:
        """Mean days from Created_Date to close, over deals that reached a closed stage."""
        close_dates = {
            c.pipeline_deal_id: c.close_date
            for c in self.store.closed_acv
            if c.pipeline_deal_id and c.close_date
        }
        history: dict[str, dict] = {}
        for s in self.store.pipeline_snapshots:
            if not s.pipeline_deal_id:
                continue
            deal = history.setdefault(s.pipeline_deal_id, {"first": s, "entries": []})
            deal["entries"].append((s.snapshot_month, s.current_stage))

        days: list[int] = []
        for deal_id, deal in history.items():
            first: PipelineSnapshotRecord = deal["first"]
            if not first.created_date:
                continue
            if rt == "License" and first.license_acv <= 0:
                continue
            if rt == "Implementation" and first.implementation_value <= 0:
                continue
            if not logo_type_matches(first.logo_type, filters.logo_type):
                continue
            if filters.region and first.region not in filters.region:
                continue
            if filters.vertical and first.vertical not in filters.vertical:
                continue
            if filters.segment and first.segment not in filters.segment:
                continue

            last_closed = None
            for month, stage in sorted(deal["entries"]):
                if "Closed Won" in stage or "Stalled" in stage or any(st in stage for st in LOST_STAGES):
                    last_closed = month
            if last_closed is None:
                continue

            close_date = close_dates.get(deal_id) or last_closed
            if not date_matches(close_date, filters):
                continue
            closed_on, created_on = parse_iso(close_date), parse_iso(first.created_date)
            if closed_on is None or created_on is None:
                continue
            days.append(max(0, (closed_on - created_on).days))
        return sum(days) / len(days) if days else 0

    def overview_funnel(self, filters: SalesFilters) -> dict:
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        stages: dict[str, dict[str, float]] = {}
        for o in filtered:
            if not o.is_open or "Closed" in o.stage:
                continue
            entry = stages.setdefault(o.stage, {"count": 0, "value": 0.0})
            entry["count"] += 1
            entry["value"] += pipeline_value(o, rt)
        rows = [
            {"stage": stage, "count": int(e["count"]), "value": js_round(e["value"])}
            for stage, e in stages.items()
        ]
        rows.sort(key=lambda r: r["value"], reverse=True)
        return {"stages": rows}

    def overview_key_deals(self, filters: KeyDealsFilters) -> dict:
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        active = [o for o in filtered if o.status == "Active" and unweighted_value(o, rt) > 0]
        active.sort(key=lambda o: unweighted_value(o, rt), reverse=True)

        deals = [
            {
                "id": o.id,
                "name": o.name,
                "accountName": o.account_name,
                "region": o.region,
                "vertical": o.vertical,
                "stage": o.stage,
                "probability": o.probability,
                "dealValue": js_round(o.deal_value),
                "unweightedValue": js_round(unweighted_value(o, rt)),
                "unweightedLicenseValue": js_round(unweighted_value(o, "License")),
                "unweightedImplementationValue": js_round(unweighted_value(o, "Implementation")),
                "licenseValue": js_round(o.license_value),
                "implementationValue": js_round(o.implementation_value),
                "expectedCloseDate": o.expected_close_date,
                "logoType": o.logo_type,
                "owner": o.owner,
                "productSubCategory": o.product_sub_category,
                "productCategory": o.product_category,
            }
            for o in active
        ]
        if filters.sort_field:
            deals = sort_rows(deals, filters.sort_field, filters.sort_direction)
        return {"deals": deals[: filters.limit]}

    def overview_closed_deals(self, filters: SalesFilters) -> dict:
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        return {
            "deals": [
                {
                    "id": o.id,
                    "name": o.name,
                    "accountName": o.account_name,
                    "logoType": o.logo_type,
                    "licenseValue": js_round(o.license_value),
                    "implementationValue": js_round(o.implementation_value),
                    "closedACV": js_round(closed_value(o, rt)),
                    "closeDate": o.expected_close_date,
                    "region": o.region,
                    "vertical": o.vertical,
                    "segment": o.segment,
                    "soldBy": o.sold_by,
                    "sowId": o.sow_id,
                    "subCategoryBreakdown": o.sub_category_breakdown,
                }
                for o in filtered
                if o.status == "Won"
            ]
        }

    def at_risk_deals(self, filters: SalesFilters) -> dict:
        """Open deals that are stalled or sit at a low probability."""
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        deals = []
        for o in filtered:
            if not o.is_open:
                continue
            if o.status != "Stalled" and o.probability > AT_RISK_PROBABILITY:
                continue
            deals.append({
                "id": o.id,
                "name": o.name,
                "accountName": o.account_name,
                "stage": o.stage,
                "status": o.status,
                "probability": o.probability,
                "riskReason": "Stalled" if o.status == "Stalled" else "Low probability",
                "weightedValue": js_round(pipeline_value(o, rt)),
                "unweightedValue": js_round(unweighted_value(o, rt)),
                "expectedCloseDate": o.expected_close_date,
                "owner": o.owner,
                "region": o.region,
            })
        deals.sort(key=lambda d: d["unweightedValue"], reverse=True)
        return {
            "count": len(deals),
            "totalValue": sum(d["unweightedValue"] for d in deals),
            "deals": deals,
        }

    # -------------------------------------------------------------------------
    # Forecast
    # -------------------------------------------------------------------------

    def forecast_quarterly(self, filters: SalesFilters) -> dict:
        filtered, prev_year = self._filtered(filters)
        rt = filters.revenue_type or "All"
        today = self._today()
        year, current_quarter = today.year, (today.month - 1) // 3 + 1

        def _in_quarter(o: Opportunity, y: int, q: int) -> bool:
            d = parse_iso(o.expected_close_date)
            return d is not None and d.year == y and (d.month - 1) // 3 + 1 == q

        quarters = []
        for q in (1, 2, 3, 4):
            actual = 0.0
            if q <= current_quarter:
                actual = sum(
                    closed_value(o, rt)
                    for o in filtered
                    if o.status == "Won" and _in_quarter(o, year, q)
                )
            pipeline = sum(
                pipeline_value(o, rt)
                for o in filtered
                if o.is_open and o.logo_type not in RENEWAL_LOGO_TYPES and _in_quarter(o, year, q)
            )
            previous = sum(
                closed_value(o, rt)
                for o in prev_year
                if o.status == "Won" and _in_quarter(o, year - 1, q)
            )
            quarters.append({
                "quarter": f"Q{q}",
                "forecast": js_round(actual + pipeline),
                "actual": js_round(actual),
                "previousYear": js_round(previous),
            })
        return {"quarters": quarters}

    def forecast_regional(self, filters: SalesFilters) -> dict:
        filtered, prev_year = self._filtered(filters)
        rt = filters.revenue_type or "All"
        year = str(self.current_year)

        regions = []
        for region in REGIONS:
            closed = sum(
                closed_value(o, rt)
                for o in filtered
                if o.status == "Won" and o.region == region and o.expected_close_date.startswith(year)
            )
            pipeline = sum(
                pipeline_value(o, rt)
                for o in filtered
                if o.is_open and o.region == region and o.logo_type not in RENEWAL_LOGO_TYPES
            )
            prev_closed, prev_pipeline = self._forecast_parts(
                [o for o in prev_year if o.region == region], rt
            )
            forecast, prev_forecast = closed + pipeline, prev_closed + prev_pipeline
            regions.append({
                "region": region,
                "forecast": js_round(forecast),
                "previousYearACV": js_round(prev_forecast),
                "closedACV": js_round(closed),
                "variance": js_round(forecast - prev_forecast),
                "yoyGrowth": (
                    js_round((forecast - prev_forecast) / prev_forecast * 100)
                    if prev_forecast > 0 else 0
                ),
            })
        return {"regions": regions}

    def forecast_trend(self, filters: SalesFilters) -> dict:
        filtered, prev_year = self._filtered(filters)
        rt = filters.revenue_type or "All"
        year = self.current_year

        def _monthly(opps, y: int, predicate) -> list[float]:
            totals = [0.0] * 12
            for o in opps:
                d = parse_iso(o.expected_close_date)
                if d is not None and d.year == y and predicate(o):
                    totals[d.month - 1] += closed_value(o, rt)
            return totals

        won = _monthly(filtered, year, lambda o: o.status == "Won")
        pipeline = _monthly(
            filtered, year, lambda o: o.is_open and o.logo_type not in RENEWAL_LOGO_TYPES
        )
        previous = _monthly(prev_year, year - 1, lambda o: o.status == "Won")

        months = []
        cumulative_forecast = cumulative_previous = 0.0
        for i, name in enumerate(MONTH_NAMES):
            cumulative_forecast += won[i] + pipeline[i]
            cumulative_previous += previous[i]
            months.append({
                "month": name,
                "cumulativeForecast": js_round(cumulative_forecast),
                "cumulativePreviousYear": js_round(cumulative_previous),
                "monthlyWon": js_round(won[i]),
                "monthlyPipeline": js_round(pipeline[i]),
            })
        return {"months": months}

    def forecast_by_subcategory(self, filters: SalesFilters) -> dict:
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        by_sub: dict[str, dict] = {}
        for o in filtered:
            if not o.is_open:
                continue
            sub = o.product_sub_category or "Unallocated"
            entry = by_sub.setdefault(sub, {"weighted": 0.0, "count": 0, "category": self._category(sub)})
            entry["weighted"] += pipeline_value(o, rt)
            entry["count"] += 1

        total = sum(e["weighted"] for e in by_sub.values())
        rows = [
            {
                "subCategory": sub,
                "category": e["category"],
                "weightedForecast": js_round(e["weighted"]),
                "percentOfTotal": round1(e["weighted"] / total * 100) if total > 0 else 0,
                "dealCount": e["count"],
            }
            for sub, e in by_sub.items()
        ]
        rows.sort(key=lambda r: r["weightedForecast"], reverse=True)
        return {"subcategories": rows}

    def monte_carlo(self, params: MonteCarloParams) -> dict:
        """
        Simulate the open pipeline closing.

        Each iteration draws every open deal independently: it closes at its
        full (unweighted) value with its own probability. Results are sorted
        and read off by index for the median and percentiles.
        """
        filtered = self.filter_opportunities(self.build_opportunities(), params)
        rt = params.revenue_type or "All"
        deals = [
            (unweighted_value(o, rt), o.probability / 100)
            for o in filtered
            if o.is_open and o.probability > 0
        ]
        rng = random.Random(params.seed)
        iterations = params.iterations

        results = sorted(
            sum(amount for amount, prob in deals if rng.random() < prob)
            for _ in range(iterations)
        )

        def _at(fraction: float) -> int:
            return js_round(results[int(iterations * fraction)])

        return {
            "iterations": iterations,
            "dealCount": len(deals),
            "mean": js_round(statistics.fmean(results)),
            "median": js_round(results[iterations // 2]),
            "std_dev": js_round(statistics.pstdev(results)),
            "percentiles": {"p10": _at(0.1), "p25": _at(0.25), "p75": _at(0.75), "p90": _at(0.9)},
        }

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _movement_target(self, months: list[str], filters: PipelineMovementFilters) -> str:
        target = filters.target_month or months[-1]
        if not filters.year:
            return target
        in_year = [m for m in months if m[:4] in filters.year]
        if not in_year:
            return target
        if filters.month and len(filters.month) == 1 and filters.month[0] in MONTH_NAMES:
            mm = f"{MONTH_NAMES.index(filters.month[0]) + 1:02d}"
            return next((m for m in in_year if m.endswith(f"-{mm}")), in_year[-1])
        if filters.quarter and len(filters.quarter) == 1:
            q = int(filters.quarter[0][1])
            wanted = {f"-{(q - 1) * 3 + i:02d}" for i in (1, 2, 3)}
            matches = [m for m in in_year if m[-3:] in wanted]
            return matches[-1] if matches else in_year[-1]
        return in_year[-1]

    def pipeline_movement(self, filters: PipelineMovementFilters) -> dict:
        snapshots = self.store.pipeline_snapshots
        months = sorted({s.snapshot_month[:7] for s in snapshots})
        if len(months) < 2:
            return _empty_movement()

        target = self._movement_target(months, filters)
        if target not in months or months.index(target) == 0:
            return _empty_movement()
        target_idx = months.index(target)

        if filters.lookback_months == 1:
            prev_idx = target_idx - 1
        else:
            lookback = add_months(target, -filters.lookback_months)
            prev_idx = next(
                (i for i in range(target_idx - 1, -1, -1) if months[i] <= lookback), 0
            )
        previous = months[prev_idx]
        rt = filters.revenue_type or "All"

        def _value(s: PipelineSnapshotRecord) -> float:
            if rt == "Implementation":
                return s.implementation_value
            if rt == "License":
                return s.license_acv
            return s.license_acv + s.implementation_value

        prev_map: dict[str, PipelineSnapshotRecord] = {}
        curr_map: dict[str, PipelineSnapshotRecord] = {}
        for s in snapshots:
            if filters.region and s.region not in filters.region:
                continue
            if filters.vertical and s.vertical not in filters.vertical:
                continue
            if filters.segment and s.segment not in filters.segment:
                continue
            if not logo_type_matches(s.logo_type, filters.logo_type):
                continue
            ym = s.snapshot_month[:7]
            if ym == previous:
                prev_map[s.pipeline_deal_id] = s
            elif ym == target:
                curr_map[s.pipeline_deal_id] = s

        buckets = {k: {"count": 0, "value": 0.0} for k in ("new", "increased", "decreased", "won", "lost")}
        details: list[dict] = []

        def _detail(key, s, category, prev_val, curr_val, stage):
            return {
                "dealId": key,
                "dealName": s.deal_name,
                "accountName": s.customer_name,
                "category": category,
                "previousValue": js_round(prev_val),
                "currentValue": js_round(curr_val),
                "change": js_round(curr_val - prev_val),
                "stage": stage,
            }

        for key, curr in curr_map.items():
            if key not in prev_map:
                val = _value(curr)
                buckets["new"]["count"] += 1
                buckets["new"]["value"] += val
                details.append(_detail(key, curr, "New", 0, val, curr.deal_stage))
        for key, curr in curr_map.items():
            prev = prev_map.get(key)
            if prev is None:
                continue
            curr_val, prev_val = _value(curr), _value(prev)
            if curr_val > prev_val:
                buckets["increased"]["count"] += 1
                buckets["increased"]["value"] += curr_val - prev_val
                details.append(_detail(key, curr, "Increased", prev_val, curr_val, curr.deal_stage))
            elif curr_val < prev_val:
                buckets["decreased"]["count"] += 1
                buckets["decreased"]["value"] += prev_val - curr_val
                details.append(_detail(key, curr, "Decreased", prev_val, curr_val, curr.deal_stage))
        for key, prev in prev_map.items():
            if key in curr_map:
                continue
            val = _value(prev)
            if prev.current_stage.startswith("Stage 7"):
                bucket, category, stage = "won", "Won", prev.current_stage
            else:
                bucket, category, stage = "lost", "Lost", prev.current_stage or "Unknown"
            buckets[bucket]["count"] += 1
            buckets[bucket]["value"] += val
            details.append(_detail(key, prev, category, val, 0, stage))

        starting = sum(_value(s) for s in prev_map.values())
        ending = sum(_value(s) for s in curr_map.values())
        prev_label, curr_label = _short_label(previous), _short_label(target)

        return {
            "prevLabel": prev_label,
            "currLabel": curr_label,
            "startingPipeline": js_round(starting),
            "endingPipeline": js_round(ending),
            "newDeals": _bucket(buckets["new"]),
            "increased": _bucket(buckets["increased"]),
            "decreased": _bucket(buckets["decreased"]),
            "won": _bucket(buckets["won"]),
            "lost": _bucket(buckets["lost"]),
            "totalChange": js_round(ending - starting),
            "waterfall": build_pipeline_waterfall(
                prev_label, curr_label, starting, ending,
                {k: b["value"] for k, b in buckets.items()},
            ),
            "dealDetails": details,
        }

    def pipeline_by_subcategory(self, filters: SalesFilters) -> dict:
        filtered = self.filter_opportunities(self.build_opportunities(), filters)
        rt = filters.revenue_type or "All"
        by_sub: dict[str, dict] = {}
        for o in filtered:
            if not o.is_open:
                continue
            sub = o.product_sub_category or "Unallocated"
            entry = by_sub.setdefault(
                sub, {"pipeline": 0.0, "weighted": 0.0, "count": 0, "category": self._category(sub)}
            )
            entry["pipeline"] += o.deal_value
            entry["weighted"] += pipeline_value(o, rt)
            entry["count"] += 1
        rows = [
            {
                "subCategory": sub,
                "category": e["category"],
                "pipelineValue": js_round(e["pipeline"]),
                "weightedValue": js_round(e["weighted"]),
                "dealCount": e["count"],
            }
            for sub, e in by_sub.items()
        ]
        rows.sort(key=lambda r: r["pipelineValue"], reverse=True)
        return {"subcategories": rows}

    # -------------------------------------------------------------------------
    # Quota / YoY
    # -------------------------------------------------------------------------

    def quota_salespeople(self, filters: QuotaFilters) -> dict:
        """
        Per-rep quota attainment.

        A year present in prior_year_performance.csv is reported straight from
        that file as a flat list. Any other year is built from the active team
        and the opportunities, with managers rolling up their reports.
        """
        # Quota reporting defaults to license value.
        rt = filters.revenue_type or "License"
        selected_year = int(filters.year[0]) if filters.year else self.current_year
        prior = self.store.prior_year_performance
        has_csv = any(r.year == selected_year for r in prior)

        if has_csv:
            people = self._historical_salespeople(selected_year)
            for sp in people:
                sp.update(_coverage(sp))
        else:
            filtered, prev_year = self._filtered(filters)
            people = self._team_salespeople(selected_year, filtered, prev_year, rt)
            people = _cascade(_roll_up(people))

        if filters.name_filter:
            needle = filters.name_filter.lower()
            people = [sp for sp in people if needle in sp["name"].lower()]
        if filters.region_filter:
            people = [sp for sp in people if sp["region"] == filters.region_filter]
        if filters.sort_field:
            people = sort_rows(people, filters.sort_field, filters.sort_direction, fold_case=True)

        return {
            "salespeople": [
                {
                    "id": sp["id"],
                    "name": sp["name"],
                    "region": sp["region"],
                    "isManager": sp["isManager"],
                    "level": sp["level"],
                    "managerId": sp["managerId"] or None,
                    "quota": js_round(sp["quota"]),
                    "closedYTD": js_round(sp["closedYTD"]),
                    "previousYearClosed": js_round(sp["previousYearClosed"]),
                    "pipelineValue": js_round(sp["pipelineValue"]),
                    "unweightedPipeline": js_round(sp["unweightedPipeline"]),
                    "forecast": js_round(sp["forecast"]),
                    "pipelineCoverage": round2(sp["pipelineCoverage"]),
                    "forecastAttainment": round1(sp["forecastAttainment"]),
                    "monthlyAttainment": sp["monthlyAttainment"],
                }
                for sp in people
            ]
        }

    def _historical_salespeople(self, year: int) -> list[dict]:
        prior = self.store.prior_year_performance
        previous_totals = {r.sales_rep_id: r.total_closed for r in prior if r.year == year - 1}
        people = []
        for row in prior:
            if row.year != year:
                continue
            quarterly = [row.q1_closed, row.q2_closed, row.q3_closed, row.q4_closed]
            quarter_quota = row.annual_quota / 4
            monthly = []
            for month in range(12):
                closed = quarterly[month // 3]
                if quarter_quota > 0:
                    monthly.append(js_round(closed / quarter_quota * 100))
                else:
                    monthly.append(100 if closed > 0 else 0)
            people.append({
                "id": row.sales_rep_id,
                "name": row.sales_rep_name,
                "region": row.region,
                "isManager": False,
                "managerId": "",
                "level": 0,
                "previousYearClosed": previous_totals.get(row.sales_rep_id, 0),
                "closedYTD": row.total_closed,
                "forecast": row.total_closed,
                "pipelineValue": 0,
                "unweightedPipeline": 0,
                "monthlyAttainment": monthly,
                "quota": row.annual_quota,
            })
        return people

    def _team_salespeople(
        self,
        year: int,
        filtered: list[Opportunity],
        prev_year: list[Opportunity],
        rt: str,
    ) -> list[dict]:
        prior_totals = {
            r.sales_rep_id: r.total_closed
            for r in self.store.prior_year_performance
            if r.year == year - 1
        }
        team = [m for m in self.store.sales_team if m.name and m.status == "Active"]
        manager_ids = {m.manager_id for m in team if m.manager_id}

        def _unweighted(o: Opportunity) -> float:
            return closed_value(o, rt) / (o.probability / 100) if o.probability > 0 else 0

        people = []
        for member in team:
            owner = member.name.strip().lower()
            won = [
                o for o in filtered
                if o.status == "Won"
                and o.owner.strip().lower() == owner
                and o.expected_close_date.startswith(str(year))
            ]
            prev_won = [
                o for o in prev_year
                if o.status == "Won" and o.owner.strip().lower() == owner
            ]
            active = [o for o in filtered if o.is_open and o.owner.strip().lower() == owner]

            closed = sum(closed_value(o, rt) for o in won)
            if member.sales_rep_id in prior_totals:
                previous_closed = prior_totals[member.sales_rep_id]
            else:
                previous_closed = sum(closed_value(o, rt) for o in prev_won)
            pipeline = sum(pipeline_value(o, rt) for o in active)

            people.append({
                "id": member.sales_rep_id,
                "name": member.name,
                "region": member.region,
                "isManager": member.sales_rep_id in manager_ids,
                "managerId": "" if member.manager_id == member.sales_rep_id else member.manager_id,
                "level": 0,
                "previousYearClosed": previous_closed,
                "closedYTD": closed,
                "forecast": closed + pipeline,
                "pipelineValue": pipeline,
                "unweightedPipeline": sum(_unweighted(o) for o in active),
                "monthlyAttainment": _monthly_attainment(won, prev_won, rt),
                "quota": member.annual_quota,
            })
        return people

    def monthly_attainment_heatmap(self, filters: QuotaFilters) -> dict:
        """Colour-coded month-by-month attainment per rep."""
        reps = self.quota_salespeople(filters)["salespeople"]
        rows = []
        for rep in reps:
            attained = [v for v in rep["monthlyAttainment"] if v > 0]
            rows.append({
                "name": rep["name"],
                "region": rep["region"],
                "isManager": rep["isManager"],
                "level": rep["level"],
                "months": [
                    {"month": MONTH_NAMES[i], "attainmentPct": v, "color": heatmap_color(v)}
                    for i, v in enumerate(rep["monthlyAttainment"])
                ],
                "avgAttainment": js_round(sum(attained) / len(attained)) if attained else 0,
            })
        return {
            "heatmap": rows,
            "monthLabels": MONTH_NAMES,
            "legend": {
                "green": "≥100% attainment",
                "yellow": "75-99% attainment",
                "red": "<75% attainment",
                "gray": "No data",
            },
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def heatmap_color(attainment: float) -> str:
    if attainment >= 100:
        return "green"
    if attainment >= 75:
        return "yellow"
    if attainment > 0:
        return "red"
    return "gray"


def _monthly_attainment(
    won: list[Opportunity], prev_won: list[Opportunity], rt: str
) -> list[int]:
    """Each month's closed value as a % of the same month last year."""

    def _by_month(opps: list[Opportunity]) -> list[float]:
        totals = [0.0] * 12
        for o in opps:
            d = parse_iso(o.expected_close_date)
            if d is not None:
                totals[d.month - 1] += closed_value(o, rt)
        return totals

    current, previous = _by_month(won), _by_month(prev_won)
    return [
        js_round(c / p * 100) if p > 0 else (100 if c > 0 else 0)
        for c, p in zip(current, previous)
    ]


def _coverage(sp: dict) -> dict:
    quota = sp["quota"]
    return {
        "pipelineCoverage": (sp["closedYTD"] + sp["unweightedPipeline"]) / quota if quota > 0 else 0,
        "forecastAttainment": sp["forecast"] / quota * 100 if quota > 0 else 0,
    }


def _roll_up(people: list[dict]) -> list[dict]:
    """Managers carry the totals of everyone below them."""
    by_id = {sp["id"]: sp for sp in people}
    cache: dict[str, dict[str, float]] = {}
    keys = ("closedYTD", "forecast", "pipelineValue", "unweightedPipeline", "quota")

    def _rollup(rep_id: str, seen: frozenset[str]) -> dict[str, float]:
        if rep_id in cache:
            return cache[rep_id]
        person = by_id.get(rep_id)
        if person is None or rep_id in seen:
            return dict.fromkeys(keys, 0.0)
        totals = {k: person[k] for k in keys}
        for report in people:
            if report["managerId"] == rep_id and report["id"] != rep_id:
                sub = _rollup(report["id"], seen | {rep_id})
                for k in keys:
                    totals[k] += sub[k]
        cache[rep_id] = totals
        return totals

    result = []
    for sp in people:
        if sp["isManager"]:
            sp = {**sp, **_rollup(sp["id"], frozenset())}
        result.append({**sp, **_coverage(sp)})
    return result


def _cascade(people: list[dict]) -> list[dict]:
    """Order reps as a tree: each manager followed by reports (managers first, then by name)."""
    by_id = {sp["id"]: sp for sp in people}
    ordered: list[dict] = []
    visited: set[str] = set()

    def _add(rep_id: str, level: int) -> None:
        if rep_id in visited or rep_id not in by_id:
            return
        visited.add(rep_id)
        ordered.append({**by_id[rep_id], "level": level})
        reports = [
            sp for sp in people
            if sp["managerId"] == rep_id and sp["id"] != rep_id
        ]
        reports.sort(key=lambda sp: (not sp["isManager"], sp["name"]))
        for report in reports:
            _add(report["id"], level + 1)

    for top in sorted((sp for sp in people if not sp["managerId"]), key=lambda sp: sp["name"]):
        _add(top["id"], 0)
    ordered.extend({**sp, "level": 0} for sp in people if sp["id"] not in visited)
    return ordered


def _short_label(ym: str) -> str:
    """"2026-01" → "Jan'26"."""
    return f"{MONTH_NAMES[int(ym[5:7]) - 1]}'{ym[2:4]}"


def _bucket(bucket: dict) -> dict:
    return {"count": bucket["count"], "value": js_round(bucket["value"])}


def _empty_movement() -> dict:
    empty = {"count": 0, "value": 0}
    return {
        "prevLabel": "",
        "currLabel": "",
        "startingPipeline": 0,
        "endingPipeline": 0,
        "newDeals": dict(empty),
        "increased": dict(empty),
        "decreased": dict(empty),
        "won": dict(empty),
        "lost": dict(empty),
        "totalChange": 0,
        "waterfall": [],
        "dealDetails": [],
    }


def build_pipeline_waterfall(
    prev_label: str, curr_label: str, starting: float, ending: float, values: dict[str, float]
) -> list[dict]:
    running = starting
    steps = [{
        "name": f"{prev_label}\nPipeline", "bottom": 0, "value": js_round(starting),
        "displayValue": js_round(starting), "fill": COLORS["gray"], "type": "initial",
    }]
    for key, name, fill in (("new", "New\nDeals", COLORS["success"]),
                            ("increased", "Value\nIncreased", COLORS["primary"])):
        steps.append({
            "name": name, "bottom": js_round(running), "value": js_round(values[key]),
            "displayValue": js_round(values[key]), "fill": fill, "type": "increase",
        })
        running += values[key]
    for key, name, fill in (("decreased", "Value\nDecreased", COLORS["warning"]),
                            ("won", "Closed\nWon", COLORS["purple"]),
                            ("lost", "Lost\nDeals", COLORS["danger"])):
        steps.append({
            "name": name, "bottom": js_round(running - values[key]), "value": js_round(values[key]),
            "displayValue": js_round(-values[key]), "fill": fill, "type": "decrease",
        })
        running -= values[key]
    steps.append({
        "name": f"{curr_label}\nPipeline", "bottom": 0, "value": js_round(ending),
        "displayValue": js_round(ending), "fill": COLORS["gray"], "type": "final",
    })
    return steps
