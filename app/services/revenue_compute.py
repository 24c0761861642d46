# =============================================================================
# ARR Analytics — Overview, Movement, Customers, Products
# =============================================================================
#
# Computes every ARR figure the dashboards and the ARR agent report, from the
# monthly ARR snapshots (one row per SOW per month) and the open pipeline.
#
# KEY TERMS:
#   prior month     the last closed month (today − 1 month); the newest month
#                   with actual ARR
#   selected month  year[0] + month[0] from the filters (defaults: the prior
#                   month's year, December)
#   forecast        last actual ARR + open pipeline License_ACV closing after
#                   the prior month, up to the target month
#
# DESIGN DECISION: `today` is injectable.
# Almost every figure is relative to "the prior month". Passing a clock
# callable keeps the service deterministic under test without patching
# `datetime`.
#
# DESIGN DECISION: Region / vertical / segment fall back to the SOW mapping.
# Older ARR snapshots leave these columns blank, and the SOW mapping is the
# system of record for them.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from app.models.filters import (
    CustomerListFilters,
    CustomerMovementFilters,
    MovementFilters,
    ProductFilters,
    RevenueFilters,
)
from app.services.analytics_common import (
    COLORS,
    MONTH_NAME_TO_NUM,
    add_months,
    js_round,
    month_key,
    month_label,
    month_range,
    prior_month,
    round1,
    sort_rows,
)
from app.services.csv_parser import normalize_region
from app.services.data_store import (
    ArrSnapshotRecord,
    DataStore,
    PipelineSnapshotRecord,
)

logger = logging.getLogger(__name__)

CLOSED_STAGES = ("Closed Won", "Closed Lost", "Closed Dead", "Closed Declined")
RENEWAL_LOGO_TYPES = {"Renewal", "Extension"}
UPSELL_LOGO_TYPES = {"Upsell", "Cross-Sell"}
TREND_START = "2024-01"
FORECAST_END = "2026-12"

RISK_ORDER = {"Lost": 5, "High Risk": 4, "Mgmt Approval": 3, "In Process": 2, "Win/PO": 1}
RISK_DISPLAY_ORDER = ["High Risk", "Lost", "Mgmt Approval", "In Process", "Win/PO"]
RISK_COLORS = {
    "Win/PO": COLORS["success"],
    "In Process": COLORS["primary"],
    "Mgmt Approval": COLORS["warning"],
    "High Risk": "#f97316",
    "Lost": COLORS["danger"],
}

MOVEMENT_TYPE_FILTERS = {
    "New Business": "New",
    "Expansion": "Expansion",
    "Schedule Change": "ScheduleChange",
    "Contraction": "Contraction",
    "Churn": "Churn",
}

MATRIX_MAX_CUSTOMERS = 50


def classify_platform(quantum_smart: str, go_live_date: str, month: str) -> str:
    """Effective platform for a month: Quantum once live, else the CSV flag."""
    if go_live_date:
        return "Quantum" if month >= go_live_date else "SMART"
    return quantum_smart or "SMART"


def _is_open(stage: str) -> bool:
    return not any(closed in stage for closed in CLOSED_STAGES)


@dataclass
class Customer:
    """One SOW's latest state (up to the prior month), with product split."""

    id: str
    name: str
    sow_id: str
    current_arr: int
    previous_arr: int
    region: str
    vertical: str
    segment: str
    platform: str
    quantum_smart: str
    quantum_go_live_date: str
    fees_type: str
    product_arr: dict[str, int] = field(default_factory=dict)


class RevenueCompute:
    """ARR analytics over one tenant's DataStore."""

    def __init__(self, store: DataStore, today: Callable[[], date] = date.today):
        self.store = store
        self._today = today

    # -------------------------------------------------------------------------
    # Clock
    # -------------------------------------------------------------------------

    @property
    def prior_month(self) -> str:
        return prior_month(self._today())

    @property
    def current_month(self) -> str:
        return month_key(self._today())

    def selected_month(self, filters: RevenueFilters) -> str:
        year = filters.year[0] if filters.year else self.prior_month[:4]
        month = MONTH_NAME_TO_NUM.get(filters.month[0], "12") if filters.month else "12"
        return f"{year}-{month}"

    def selected_year(self, filters: RevenueFilters) -> str:
        return filters.year[0] if filters.year else self.prior_month[:4]

    # -------------------------------------------------------------------------
    # Row filters
    # -------------------------------------------------------------------------

    def _dimensions(self, row: ArrSnapshotRecord) -> tuple[str, str, str]:
        sow = self.store.sow_index.get(row.sow_id)
        region = row.region or (normalize_region(sow.region) if sow else "")
        vertical = row.vertical or (sow.vertical if sow else "")
        segment = row.segment or (sow.segment_type if sow else "")
        return region, vertical, segment

    def arr_row_passes(self, row: ArrSnapshotRecord, filters: RevenueFilters) -> bool:
        region, vertical, segment = self._dimensions(row)
        if filters.region and region not in filters.region:
            return False
        if filters.vertical and vertical not in filters.vertical:
            return False
        if filters.segment and segment not in filters.segment:
            return False
        if filters.platform and (row.quantum_smart or "SMART") not in filters.platform:
            return False
        if filters.quantum_smart and filters.quantum_smart != "All":
            effective = classify_platform(
                row.quantum_smart, row.quantum_go_live_date, self.current_month
            )
            if effective != filters.quantum_smart:
                return False
        return True

    @staticmethod
    def pipeline_row_passes(row: PipelineSnapshotRecord, filters: RevenueFilters) -> bool:
        if filters.region and row.region not in filters.region:
            return False
        if filters.vertical and row.vertical not in filters.vertical:
            return False
        if filters.segment and row.segment and row.segment not in filters.segment:
            return False
        return True

    def _arr_rows(self, filters: RevenueFilters, month: str | None = None):
        for row in self.store.arr_snapshots:
            if month is not None and row.snapshot_month[:7] != month:
                continue
            if self.arr_row_passes(row, filters):
                yield row

    def _ending_arr(self, filters: RevenueFilters, month: str) -> float:
        return sum(row.ending_arr for row in self._arr_rows(filters, month))

    def _actual_by_month(self, filters: RevenueFilters) -> dict[str, float]:
        totals: dict[str, float] = {}
        cutoff = self.prior_month
        for row in self._arr_rows(filters):
            ym = row.snapshot_month[:7]
            if ym <= cutoff:
                totals[ym] = totals.get(ym, 0.0) + row.ending_arr
        return totals

    def _last_actual_arr(self, filters: RevenueFilters) -> float:
        actuals = self._actual_by_month(filters)
        return actuals[max(actuals)] if actuals else 0.0

    def _open_pipeline(self, filters: RevenueFilters):
        """Open deals from the newest pipeline snapshot that pass the filters."""
        snapshots = self.store.pipeline_snapshots
        if not snapshots:
            return
        latest = max(row.snapshot_month for row in snapshots)
        for row in snapshots:
            if row.snapshot_month != latest or not _is_open(row.current_stage):
                continue
            if self.pipeline_row_passes(row, filters):
                yield row

    def _forecast_to(self, filters: RevenueFilters, target: str) -> int:
        if target <= self.prior_month:
            return js_round(self._ending_arr(filters, target))
        cutoff = self.prior_month
        pipeline = sum(
            row.license_acv
            for row in self._open_pipeline(filters)
            if cutoff < row.expected_close_date[:7] <= target
        )
        return js_round(self._last_actual_arr(filters) + pipeline)

    # -------------------------------------------------------------------------
    # Customers (per SOW)
    # -------------------------------------------------------------------------

    def build_customers(self) -> list[Customer]:
        cutoff = self.prior_month
        year = self._today().year
        groups: dict[str, list[ArrSnapshotRecord]] = {}
        for row in self.store.arr_snapshots:
            if row.snapshot_month[:7] > cutoff:
                continue
            groups.setdefault(row.sow_id, []).append(row)

        customers: list[Customer] = []
        for sow_id, rows in groups.items():
            rows.sort(key=lambda r: r.snapshot_month, reverse=True)
            latest = rows[0]
            previous_arr = rows[1].ending_arr if len(rows) > 1 else latest.starting_arr
            sow = self.store.sow_index.get(sow_id)
            region = latest.region or (normalize_region(sow.region) if sow else "North America")
            vertical = latest.vertical or (sow.vertical if sow else "Other Services")
            segment = latest.segment or (sow.segment_type if sow else "Enterprise")

            product_arr: dict[str, int] = {}
            for sub in self.store.sub_categories_by_sow.get(sow_id, []):
                pct = sub.pct_for_year(year)
                if pct > 0 and sub.product_sub_category:
                    product_arr[sub.product_sub_category] = js_round(
                        latest.ending_arr * pct / 100
                    )

            customers.append(
                Customer(
                    id=f"CUST-{sow_id}",
                    name=latest.customer_name,
                    sow_id=sow_id,
                    current_arr=js_round(latest.ending_arr),
                    previous_arr=js_round(previous_arr),
                    region=region,
                    vertical=vertical,
                    segment="SMB" if segment == "SMB" else "Enterprise",
                    platform=latest.quantum_smart or "SMART",
                    quantum_smart="Quantum" if latest.quantum_smart == "Quantum" else "SMART",
                    quantum_go_live_date=latest.quantum_go_live_date,
                    fees_type=(sow.fees_type if sow else "") or "Fees",
                    product_arr=product_arr,
                )
            )
        return customers

    def filter_customers(
        self, customers: list[Customer], filters: RevenueFilters
    ) -> list[Customer]:
        result = []
        for c in customers:
            if filters.region and c.region not in filters.region:
                continue
            if filters.vertical and c.vertical not in filters.vertical:
                continue
            if filters.segment and c.segment not in filters.segment:
                continue
            if filters.platform and c.platform not in filters.platform:
                continue
            if filters.quantum_smart and filters.quantum_smart != "All":
                effective = classify_platform(
                    c.quantum_smart, c.quantum_go_live_date, self.current_month
                )
                if effective != filters.quantum_smart:
                    continue
            result.append(c)
        return result

    def _product_customers(self, filters: ProductFilters) -> list[Customer]:
        customers = self.filter_customers(self.build_customers(), filters)
        if filters.fees_type and filters.fees_type != "All":
            customers = [c for c in customers if c.fees_type == filters.fees_type]
        return customers

    def _category(self, sub_category: str) -> str:
        return self.store.product_category_index.get(sub_category, "Other")

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    def overview_metrics(self, filters: RevenueFilters) -> dict:
        selected = self.selected_month(filters)
        current_arr = js_round(self._ending_arr(filters, selected))
        previous_arr = js_round(self._ending_arr(filters, add_months(selected, -1)))

        expansion = contraction = churn = schedule_change = 0.0
        for row in self._arr_rows(filters, selected):
            expansion += row.expansion_arr
            contraction += abs(row.contraction_arr)
            churn += abs(row.churn_arr)
            schedule_change += row.schedule_change

        growth = (
            (current_arr - previous_arr) / previous_arr * 100 if previous_arr > 0 else 0
        )
        monthly_nrr = (
            (previous_arr + expansion + schedule_change - contraction - churn)
            / previous_arr * 100
            if previous_arr > 0 else 0
        )
        monthly_grr = (
            (previous_arr + schedule_change - contraction - churn) / previous_arr * 100
            if previous_arr > 0 else 0
        )

        year_end_arr = self._forecast_to(filters, f"{self.selected_year(filters)}-12")
        month_forecast = self._forecast_to(filters, selected)
        full_year_nrr, full_year_grr = self._full_year_retention(filters)

        def _growth(value: float) -> float:
            return round1((value - current_arr) / current_arr * 100) if current_arr > 0 else 0

        return {
            "currentARR": current_arr,
            "previousARR": previous_arr,
            "ytdGrowth": round1(growth),
            "yearEndARR": year_end_arr,
            "yearEndGrowth": _growth(year_end_arr),
            "monthForecast": month_forecast,
            "monthForecastGrowth": _growth(month_forecast),
            "monthlyNRR": round1(monthly_nrr),
            "monthlyGRR": round1(monthly_grr),
            "fullYearNRR": round1(full_year_nrr),
            "fullYearGRR": round1(full_year_grr),
            "expansion": js_round(expansion),
            "contraction": js_round(contraction),
            "churn": js_round(churn),
            "scheduleChange": js_round(schedule_change),
            "currentARRMonthLabel": month_label(selected),
        }

    def _full_year_retention(self, filters: RevenueFilters) -> tuple[float, float]:
        year = self.selected_year(filters)
        cutoff = self.prior_month
        start_arr = self._ending_arr(filters, f"{year}-01")

        expansion = schedule_change = contraction = churn = 0.0
        for row in self._arr_rows(filters):
            ym = row.snapshot_month[:7]
            if ym.startswith(year) and ym <= cutoff:
                expansion += row.expansion_arr
                schedule_change += row.schedule_change
                contraction += abs(row.contraction_arr)
                churn += abs(row.churn_arr)

        renewal_pipeline = upsell_pipeline = 0.0
        if f"{year}-12" > cutoff:
            for row in self._open_pipeline(filters):
                close_month = row.expected_close_date[:7]
                if close_month <= cutoff or not close_month.startswith(year):
                    continue
                if row.logo_type in RENEWAL_LOGO_TYPES:
                    renewal_pipeline += row.license_acv
                elif row.logo_type in UPSELL_LOGO_TYPES:
                    upsell_pipeline += row.license_acv

        if start_arr <= 0:
            return 0.0, 0.0
        retained = start_arr + schedule_change + renewal_pipeline - contraction - churn
        nrr = (retained + expansion + upsell_pipeline) / start_arr * 100
        grr = retained / start_arr * 100
        return nrr, grr

    def arr_trend(self, filters: RevenueFilters) -> dict:
        cutoff = self.prior_month
        actuals = self._actual_by_month(filters)

        months: list[dict] = []
        last_actual = 0.0
        for ym in month_range(TREND_START, cutoff):
            ending = actuals.get(ym, 0.0)
            if ending > 0:
                last_actual = ending
            months.append({
                "month": month_label(ym, two_digit_year=True),
                "currentARR": js_round(ending),
                "forecastedARR": None,
                "forecastBase": None,
                "forecastRenewals": None,
                "forecastNewBusiness": None,
            })

        renewals: dict[str, float] = {}
        new_business: dict[str, float] = {}
        for row in self._open_pipeline(filters):
            close_month = row.expected_close_date[:7]
            if close_month <= cutoff:
                continue
            bucket = renewals if row.logo_type in RENEWAL_LOGO_TYPES else new_business
            bucket[close_month] = bucket.get(close_month, 0.0) + row.license_acv

        cumulative_renewals = cumulative_new = 0.0
        for ym in month_range(add_months(cutoff, 1), FORECAST_END):
            cumulative_renewals += renewals.get(ym, 0.0)
            cumulative_new += new_business.get(ym, 0.0)
            months.append({
                "month": month_label(ym, two_digit_year=True),
                "currentARR": 0,
                "forecastedARR": js_round(last_actual + cumulative_renewals + cumulative_new),
                "forecastBase": js_round(last_actual),
                "forecastRenewals": js_round(cumulative_renewals),
                "forecastNewBusiness": js_round(cumulative_new),
            })

        return {"months": months}

    def arr_by_dimension(self, filters: RevenueFilters) -> dict:
        by_region: dict[str, float] = {}
        by_vertical: dict[str, float] = {}
        by_category: dict[str, float] = {}
        for c in self.filter_customers(self.build_customers(), filters):
            by_region[c.region] = by_region.get(c.region, 0) + c.current_arr
            by_vertical[c.vertical] = by_vertical.get(c.vertical, 0) + c.current_arr
            for sub_category, arr in c.product_arr.items():
                category = self._category(sub_category)
                by_category[category] = by_category.get(category, 0) + arr

        def _ranked(totals: dict[str, float]) -> list[dict]:
            rows = [{"name": k, "value": js_round(v)} for k, v in totals.items()]
            return sorted(rows, key=lambda r: r["value"], reverse=True)

        return {
            "byRegion": _ranked(by_region),
            "byVertical": _ranked(by_vertical),
            "byCategory": _ranked(by_category),
        }

    # -------------------------------------------------------------------------
    # Movement
    # -------------------------------------------------------------------------

    def _lookback_window(self, filters: MovementFilters) -> list[str]:
        end = self.selected_month(filters)
        start = add_months(end, -(max(filters.lookback_period, 1) - 1))
        return month_range(start, end)

    def movement_summary(self, filters: MovementFilters) -> dict:
        window = self._lookback_window(filters)
        keys = ("starting", "new", "expansion", "schedule", "contraction", "churn", "ending")
        aggregates = {ym: dict.fromkeys(keys, 0.0) for ym in window}

        for row in self._arr_rows(filters):
            agg = aggregates.get(row.snapshot_month[:7])
            if agg is None:
                continue
            agg["starting"] += row.starting_arr
            agg["new"] += row.new_arr
            agg["expansion"] += row.expansion_arr
            agg["schedule"] += row.schedule_change
            agg["contraction"] += row.contraction_arr
            agg["churn"] += row.churn_arr
            agg["ending"] += row.ending_arr

        def _total(key: str) -> float:
            return sum(agg[key] for agg in aggregates.values())

        starting = js_round(aggregates[window[0]]["starting"])
        ending = js_round(aggregates[window[-1]]["ending"])
        totals = {
            "newBusiness": js_round(_total("new")),
            "expansion": js_round(_total("expansion")),
            "scheduleChange": js_round(_total("schedule")),
            "contraction": js_round(-abs(_total("contraction"))),
            "churn": js_round(-abs(_total("churn"))),
        }
        return {
            "startingARR": starting,
            "endingARR": ending,
            **totals,
            "waterfall": build_arr_waterfall(starting, ending, totals),
        }

    def movement_customers(self, filters: CustomerMovementFilters) -> dict:
        window = self._lookback_window(filters)
        start, end = window[0], window[-1]
        by_customer: dict[str, dict[str, float]] = {}

        for row in self._arr_rows(filters):
            ym = row.snapshot_month[:7]
            if ym < start or ym > end:
                continue
            c = by_customer.setdefault(row.customer_name, {
                "starting": 0.0, "ending": 0.0, "new": 0.0, "expansion": 0.0,
                "schedule": 0.0, "contraction": 0.0, "churn": 0.0,
            })
            if ym == start:
                c["starting"] += row.starting_arr
            if ym == end:
                c["ending"] += row.ending_arr
            c["new"] += row.new_arr
            c["expansion"] += row.expansion_arr
            c["schedule"] += row.schedule_change
            c["contraction"] += row.contraction_arr
            c["churn"] += row.churn_arr

        rows = []
        for name, c in by_customer.items():
            change = js_round(c["ending"] - c["starting"])
            movement_type = classify_customer_movement(c, change)
            if movement_type == "Flat" and change == 0:
                continue
            if c["starting"] > 0:
                change_percent = js_round((c["ending"] - c["starting"]) / c["starting"] * 1000) / 10
            else:
                change_percent = 100 if c["ending"] > 0 else 0
            rows.append({
                "customerName": name,
                "startingARR": js_round(c["starting"]),
                "endingARR": js_round(c["ending"]),
                "newBusiness": js_round(c["new"]),
                "expansion": js_round(c["expansion"]),
                "scheduleChange": js_round(c["schedule"]),
                "contraction": js_round(c["contraction"]),
                "churn": js_round(c["churn"]),
                "change": change,
                "changePercent": change_percent,
                "movementType": movement_type,
            })

        wanted = MOVEMENT_TYPE_FILTERS.get(filters.movement_type or "")
        if wanted:
            rows = [r for r in rows if r["movementType"] == wanted]

        if filters.sort_field:
            rows = sort_rows(rows, filters.sort_field, filters.sort_direction)
        else:
            rows.sort(key=lambda r: abs(r["change"]), reverse=True)
        return {"customers": rows}

    def movement_trend(self, filters: RevenueFilters) -> dict:
        cutoff = self.prior_month
        by_month: dict[str, dict[str, float]] = {}
        for row in self._arr_rows(filters):
            ym = row.snapshot_month[:7]
            if ym < TREND_START or ym > cutoff:
                continue
            m = by_month.setdefault(ym, {
                "newBusiness": 0.0, "expansion": 0.0, "scheduleChange": 0.0,
                "contraction": 0.0, "churn": 0.0,
            })
            m["newBusiness"] += row.new_arr
            m["expansion"] += row.expansion_arr
            m["scheduleChange"] += row.schedule_change
            m["contraction"] += row.contraction_arr
            m["churn"] += row.churn_arr

        months = []
        for ym in sorted(by_month):
            m = by_month[ym]
            months.append({
                "date": f"{ym}-01",
                **{k: js_round(v) for k, v in m.items()},
                "netChange": js_round(sum(m.values())),
            })
        return {"months": months}

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def customers_list(self, filters: CustomerListFilters) -> dict:
        selected = self.selected_month(filters)
        by_customer: dict[str, dict] = {}

        for row in self._arr_rows(filters, selected):
            if row.ending_arr == 0 and row.starting_arr == 0:
                continue
            sow = self.store.sow_index.get(row.sow_id)
            region, vertical, segment = self._dimensions(row)
            detail = {
                "sowId": row.sow_id,
                "sowName": (sow.sow_name if sow else "") or f"SOW {row.sow_id}",
                "endingARR": row.ending_arr,
                "feesType": (sow.fees_type if sow else "") or "Fees",
                "contractEndDate": row.contract_end_date,
                "renewalRisk": row.renewal_risk,
            }
            entry = by_customer.get(row.customer_name)
            if entry is None:
                by_customer[row.customer_name] = {
                    "totalARR": row.ending_arr,
                    "region": region,
                    "vertical": vertical,
                    "segment": segment,
                    "sows": [detail],
                }
                continue
            entry["totalARR"] += row.ending_arr
            entry["sows"].append(detail)
            entry["region"] = entry["region"] or region
            entry["vertical"] = entry["vertical"] or vertical
            entry["segment"] = entry["segment"] or segment

        customers = []
        for name, entry in by_customer.items():
            sows = sorted(entry["sows"], key=lambda s: s["endingARR"], reverse=True)
            end_dates = [s["contractEndDate"] for s in sows if s["contractEndDate"]]
            highest_risk, highest_order = "", 0
            for s in sows:
                order = RISK_ORDER.get(s["renewalRisk"], 0)
                if order > highest_order:
                    highest_risk, highest_order = s["renewalRisk"], order
            customers.append({
                "customerName": name,
                "totalARR": js_round(entry["totalARR"]),
                "region": entry["region"],
                "vertical": entry["vertical"],
                "segment": entry["segment"],
                "sowCount": len(sows),
                "earliestRenewalDate": min(end_dates) if end_dates else "",
                "highestRisk": highest_risk,
                "sows": [{**s, "endingARR": js_round(s["endingARR"])} for s in sows],
            })

        if filters.search:
            needle = filters.search.lower()
            customers = [c for c in customers if needle in c["customerName"].lower()]
        if filters.renewals_2026:
            customers = [
                c for c in customers
                if any(s["contractEndDate"].startswith("2026") for s in c["sows"])
            ]
        if filters.renewal_risk:
            customers = [
                c for c in customers
                if any(
                    s["contractEndDate"].startswith("2026")
                    and s["renewalRisk"] == filters.renewal_risk
                    for s in c["sows"]
                )
            ]

        if filters.sort_field:
            customers = sort_rows(customers, filters.sort_field, filters.sort_direction)
        else:
            customers.sort(key=lambda c: c["totalARR"], reverse=True)
        return {"customers": customers}

    def renewal_risk(self, filters: RevenueFilters) -> dict:
        selected = self.selected_month(filters)
        renewals = [
            row for row in self._arr_rows(filters, selected)
            if row.contract_end_date.startswith("2026")
        ]

        distribution: dict[str, int] = {}
        calendar: dict[str, dict[str, float]] = {}
        for row in renewals:
            risk = row.renewal_risk.strip()
            if risk and not risk.startswith('"') and risk != "#N/A":
                distribution[risk] = distribution.get(risk, 0) + 1
            entry = calendar.setdefault(
                row.contract_end_date[:7], {"sowCount": 0, "totalARR": 0.0}
            )
            entry["sowCount"] += 1
            entry["totalARR"] += row.ending_arr

        def _rank(risk: str) -> int:
            return RISK_DISPLAY_ORDER.index(risk) if risk in RISK_DISPLAY_ORDER else 99

        return {
            "riskDistribution": [
                {"risk": risk, "count": count, "color": RISK_COLORS.get(risk, COLORS["gray"])}
                for risk, count in sorted(distribution.items(), key=lambda kv: _rank(kv[0]))
            ],
            "renewalCalendar": [
                {
                    "month": month,
                    "sowCount": int(entry["sowCount"]),
                    "totalARR": js_round(entry["totalARR"]),
                }
                for month, entry in sorted(calendar.items())
            ],
        }

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def products(self, filters: ProductFilters) -> dict:
        by_product: dict[str, dict] = {}
        for c in self._product_customers(filters):
            for product, arr in c.product_arr.items():
                p = by_product.setdefault(
                    product, {"totalARR": 0.0, "customers": set(), "category": self._category(product)}
                )
                p["totalARR"] += arr
                p["customers"].add(c.id)

        rows = []
        for name, p in by_product.items():
            count = len(p["customers"])
            rows.append({
                "subCategory": name,
                "category": p["category"],
                "totalARR": js_round(p["totalARR"]),
                "customerCount": count,
                "avgARRPerCustomer": js_round(p["totalARR"] / count) if count else 0,
            })
        rows.sort(key=lambda r: r["totalARR"], reverse=True)

        if filters.product_category and filters.product_category != "All":
            rows = [r for r in rows if r["category"] == filters.product_category]
        if filters.product_sub_category and filters.product_sub_category != "All":
            rows = [r for r in rows if r["subCategory"] == filters.product_sub_category]
        return {"products": rows}

    def category_summary(self, filters: ProductFilters) -> dict:
        """Per-category rollup of the sub-category table, plus headline KPIs."""
        sub_categories = self.products(
            ProductFilters(**{**filters.model_dump(), "product_category": None,
                              "product_sub_category": None})
        )["products"]

        customers_by_category: dict[str, set[str]] = {}
        for c in self._product_customers(filters):
            for product in c.product_arr:
                customers_by_category.setdefault(self._category(product), set()).add(c.id)

        by_category: dict[str, dict] = {}
        for sub in sub_categories:
            entry = by_category.setdefault(sub["category"], {"totalARR": 0, "subCategories": []})
            entry["totalARR"] += sub["totalARR"]
            entry["subCategories"].append(sub["subCategory"])

        categories = []
        for name, entry in by_category.items():
            count = len(customers_by_category.get(name, ()))
            categories.append({
                "category": name,
                "totalARR": entry["totalARR"],
                "customerCount": count,
                "subCategoryCount": len(entry["subCategories"]),
                "avgARRPerCustomer": js_round(entry["totalARR"] / count) if count else 0,
                "subCategories": entry["subCategories"],
            })
        categories.sort(key=lambda r: r["totalARR"], reverse=True)

        top = categories[0] if categories else None
        most_adopted = max(categories, key=lambda r: r["customerCount"], default=None)
        return {
            "categories": categories,
            "kpis": {
                "totalCategories": len(categories),
                "totalSubCategories": len(sub_categories),
                "topCategory": {"name": top["category"], "totalARR": top["totalARR"]} if top else None,
                "mostAdopted": (
                    {"name": most_adopted["category"], "customerCount": most_adopted["customerCount"]}
                    if most_adopted else None
                ),
            },
        }

    def customer_category_matrix(self, filters: ProductFilters) -> dict:
        """Customer × category ARR, SOW rows grouped under each customer name."""
        by_name: dict[str, dict] = {}
        for c in self._product_customers(filters):
            if c.current_arr <= 0:
                continue
            entry = by_name.setdefault(c.name, {
                "customerName": c.name,
                "region": c.region,
                "vertical": c.vertical,
                "totalARR": 0,
                "categories": {},
                "sows": [],
            })
            entry["totalARR"] += c.current_arr
            sow_categories: dict[str, int] = {}
            for product, arr in c.product_arr.items():
                category = self._category(product)
                entry["categories"][category] = entry["categories"].get(category, 0) + arr
                sow_categories[category] = sow_categories.get(category, 0) + arr
            sow = self.store.sow_index.get(c.sow_id)
            entry["sows"].append({
                "sowId": c.sow_id,
                "sowName": (sow.sow_name if sow else "") or f"SOW {c.sow_id}",
                "totalARR": c.current_arr,
                "categories": sow_categories,
            })

        rows = list(by_name.values())
        if filters.search:
            needle = filters.search.lower()
            rows = [r for r in rows if needle in r["customerName"].lower()]
        rows.sort(key=lambda r: r["totalARR"], reverse=True)

        category_names = sorted({cat for r in rows for cat in r["categories"]})
        return {
            "categories": category_names,
            "customers": rows[:MATRIX_MAX_CUSTOMERS],
            "truncated": len(rows) > MATRIX_MAX_CUSTOMERS,
            "total": len(rows),
        }

    def cross_sell_analysis(self, filters: ProductFilters) -> dict:
        """How many sub-categories each customer uses, and category adoption."""
        products_by_customer: dict[str, set[str]] = {}
        category_stats: dict[str, dict] = {}
        for c in self._product_customers(filters):
            if c.current_arr <= 0:
                continue
            products_by_customer.setdefault(c.name, set()).update(c.product_arr)
            for product, arr in c.product_arr.items():
                stats = category_stats.setdefault(
                    self._category(product), {"customers": set(), "totalARR": 0}
                )
                stats["customers"].add(c.name)
                stats["totalARR"] += arr

        buckets = {"1 Sub-Category": 0, "2 Sub-Categories": 0, "3+ Sub-Categories": 0}
        for products in products_by_customer.values():
            if len(products) >= 3:
                buckets["3+ Sub-Categories"] += 1
            elif len(products) == 2:
                buckets["2 Sub-Categories"] += 1
            elif len(products) == 1:
                buckets["1 Sub-Category"] += 1

        counted = sum(buckets.values())
        multi = buckets["2 Sub-Categories"] + buckets["3+ Sub-Categories"]
        matrix = []
        for name, stats in category_stats.items():
            count = len(stats["customers"])
            matrix.append({
                "category": name,
                "customerCount": count,
                "totalARR": stats["totalARR"],
                "avgARRPerCustomer": js_round(stats["totalARR"] / count) if count else 0,
            })
        matrix.sort(key=lambda r: r["totalARR"], reverse=True)

        return {
            "distribution": [{"name": k, "count": v} for k, v in buckets.items()],
            "crossSellRate": js_round(multi / counted * 100) if counted else 0,
            "categoryMatrix": matrix,
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def classify_customer_movement(c: dict[str, float], change: int) -> str:
    """First match wins: Churn, New, Expansion, Contraction, ScheduleChange, Flat."""
    if abs(c["churn"]) > 0 and c["ending"] == 0:
        return "Churn"
    if c["new"] > 0 and c["starting"] == 0:
        return "New"
    if change > 0 and c["expansion"] > 0:
        return "Expansion"
    if c["contraction"] < 0 or change < 0:
        return "Contraction"
    if c["schedule"] != 0:
        return "ScheduleChange"
    return "Flat"


def build_arr_waterfall(starting: int, ending: int, totals: dict[str, int]) -> list[dict]:
    """Bridge chart from starting to ending ARR; decreases hang below the running total."""

    def _step(name, bottom, value, display, fill, kind):
        return {"name": name, "bottom": bottom, "value": value,
                "displayValue": display, "fill": fill, "type": kind}

    running = starting
    steps = [_step("Starting\nARR", 0, starting, starting, COLORS["gray"], "initial")]

    steps.append(_step("New\nBusiness", running, totals["newBusiness"],
                       totals["newBusiness"], COLORS["success"], "increase"))
    running += totals["newBusiness"]

    steps.append(_step("Expansion", running, totals["expansion"],
                       totals["expansion"], COLORS["primary"], "increase"))
    running += totals["expansion"]

    schedule = totals["scheduleChange"]
    if schedule >= 0:
        steps.append(_step("Schedule\nChange", running, schedule, schedule,
                           COLORS["purple"], "increase"))
        running += schedule
    else:
        steps.append(_step("Schedule\nChange", running - abs(schedule), abs(schedule),
                           schedule, COLORS["purple"], "decrease"))
        running -= abs(schedule)

    contraction = abs(totals["contraction"])
    steps.append(_step("Contraction", running - contraction, contraction,
                       totals["contraction"], COLORS["warning"], "decrease"))
    running -= contraction

    churn = abs(totals["churn"])
    steps.append(_step("Churn", running - churn, churn, totals["churn"],
                       COLORS["danger"], "decrease"))

    steps.append(_step("Ending\nARR", 0, ending, ending, COLORS["primary"], "final"))
    return steps
