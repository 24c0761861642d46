# =============================================================================
# Analytics Data Store — Typed, In-Memory CSV Records
# =============================================================================
#
# Loads the analytics CSV exports (ARR snapshots, pipeline snapshots, closed
# ACV, sales team, mappings) into typed dataclass records and builds the
# lookup indexes that both analytics services need.
#
# DESIGN DECISION: In-memory, per-tenant, load-once.
# The exports are a few thousand rows per file. Holding them as dataclasses
# keeps every analytics call a pure function over lists, with no database
# round trips. Each tenant can ship its own exports in <data_dir>/<slug>/;
# tenants without one share the base directory.
#
# DESIGN DECISION: Missing files degrade, they do not crash.
# A missing CSV logs a warning and yields an empty dataset, so a tenant that
# only exports ARR data still gets working ARR analytics.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from app.config import settings
from app.services.csv_parser import (
    normalize_logo_type,
    normalize_numeric_id,
    parse_date,
    parse_number,
    read_csv_records,
)

logger = logging.getLogger(__name__)


DATASET_FILES = (
    "closed_acv",
    "monthly_pipeline_snapshot",
    "monthly_arr_snapshot",
    "sales_team_structure",
    "customer_name_mapping",
    "sow_mapping",
    "arr_subcategory_breakdown",
    "product_category_mapping",
    "prior_year_performance",
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ClosedAcvRecord:
    closed_acv_id: str
    pipeline_deal_id: str
    deal_name: str
    customer_name: str
    close_date: str
    logo_type: str
    value_type: str
    amount: float
    license_acv: float
    implementation_value: float
    region: str
    vertical: str
    segment: str
    platform: str
    sales_rep: str
    sow_id: str
    sold_by: str


@dataclass
class PipelineSnapshotRecord:
    snapshot_month: str
    pipeline_deal_id: str
    deal_name: str
    customer_name: str
    deal_value: float
    license_acv: float
    implementation_value: float
    logo_type: str
    deal_stage: str
    current_stage: str
    probability: float
    expected_close_date: str
    region: str
    vertical: str
    segment: str
    product_sub_category: str
    sales_rep: str
    created_date: str = ""


@dataclass
class ArrSnapshotRecord:
    snapshot_month: str
    sow_id: str
    customer_name: str
    quantum_smart: str
    quantum_go_live_date: str
    starting_arr: float
    new_arr: float
    expansion_arr: float
    schedule_change: float
    contraction_arr: float
    churn_arr: float
    ending_arr: float
    region: str
    vertical: str
    segment: str
    contract_start_date: str
    contract_end_date: str
    renewal_risk: str


@dataclass
class SalesTeamRecord:
    sales_rep_id: str
    name: str
    email: str
    role: str
    region: str
    vertical_focus: str
    segment: str
    manager_id: str
    manager_name: str
    annual_quota: float
    q1_quota: float
    q2_quota: float
    q3_quota: float
    q4_quota: float
    hire_date: str
    status: str


@dataclass
class CustomerNameMappingRecord:
    arr_customer_name: str
    pipeline_customer_name: str


@dataclass
class SowMappingRecord:
    sow_id: str
    sow_name: str
    vertical: str
    region: str
    fees_type: str
    revenue_type: str
    segment_type: str
    start_date: str


@dataclass
class ArrSubCategoryRecord:
    sow_id: str
    customer_name: str
    product_sub_category: str
    pct_2024: float
    pct_2025: float
    pct_2026: float

    def pct_for_year(self, year: int | str) -> float:
        """Contribution % for a year; years after 2026 use the 2026 split."""
        year = int(year)
        if year <= 2024:
            return self.pct_2024
        if year == 2025:
            return self.pct_2025
        return self.pct_2026


@dataclass
class ProductCategoryMappingRecord:
    product_sub_category: str
    product_category: str
    description: str
    status: str


@dataclass
class PriorYearPerformanceRecord:
    year: int
    sales_rep_id: str
    sales_rep_name: str
    region: str
    annual_quota: float
    q1_closed: float
    q2_closed: float
    q3_closed: float
    q4_closed: float
    total_closed: float


# ---------------------------------------------------------------------------
# Row → Record mapping
# ---------------------------------------------------------------------------
# Column aliases cover the different header spellings seen in real exports
# ("Sold By" vs "Sold_By", "Quantum/SMART" vs "Quantum_SMART", ...).
# ---------------------------------------------------------------------------


def _col(row: dict[str, str], *names: str) -> str:
    for name in names:
        value = row.get(name)
        if value:
            return value.strip()
    return ""


def _closed_acv(row: dict[str, str]) -> ClosedAcvRecord:
    return ClosedAcvRecord(
        closed_acv_id=_col(row, "Closed_ACV_ID"),
        pipeline_deal_id=normalize_numeric_id(_col(row, "Pipeline_Deal_ID")),
        deal_name=_col(row, "Deal_Name"),
        customer_name=_col(row, "Customer_Name"),
        close_date=parse_date(_col(row, "Close_Date")),
        logo_type=normalize_logo_type(_col(row, "Logo_Type")),
        value_type=_col(row, "Value_Type"),
        amount=parse_number(_col(row, "Amount")),
        license_acv=parse_number(_col(row, "License_ACV")),
        implementation_value=parse_number(_col(row, "Implementation_Value")),
        region=_col(row, "Region"),
        vertical=_col(row, "Vertical"),
        segment=_col(row, "Segment"),
        platform=_col(row, "Platform"),
        sales_rep=_col(row, "Sales_Rep"),
        sow_id=normalize_numeric_id(_col(row, "SOW_ID")),
        sold_by=_col(row, "Sold By", "Sold_By") or "Sales",
    )


def _pipeline(row: dict[str, str]) -> PipelineSnapshotRecord:
    return PipelineSnapshotRecord(
        snapshot_month=parse_date(_col(row, "Snapshot_Month")),
        pipeline_deal_id=normalize_numeric_id(_col(row, "Pipeline_Deal_ID")),
        deal_name=_col(row, "Deal_Name"),
        customer_name=_col(row, "Customer_Name"),
        deal_value=parse_number(_col(row, "Deal_Value")),
        license_acv=parse_number(_col(row, "License_ACV")),
        implementation_value=parse_number(_col(row, "Implementation_Value")),
        logo_type=normalize_logo_type(_col(row, "Logo_Type")),
        deal_stage=_col(row, "Deal_Stage"),
        current_stage=_col(row, "Current_Stage"),
        probability=parse_number(_col(row, "Probability")),
        expected_close_date=parse_date(_col(row, "Expected_Close_Date")),
        region=_col(row, "Region"),
        vertical=_col(row, "Vertical"),
        segment=_col(row, "Segment"),
        product_sub_category=_col(row, "Product_Sub_Category"),
        sales_rep=_col(row, "Sales_Rep"),
        created_date=parse_date(_col(row, "Created_Date")),
    )


def _arr(row: dict[str, str]) -> ArrSnapshotRecord:
    return ArrSnapshotRecord(
        snapshot_month=parse_date(_col(row, "Snapshot_Month")),
        sow_id=normalize_numeric_id(_col(row, "SOW_ID")),
        customer_name=_col(row, "Customer_Name"),
        quantum_smart=_col(row, "Quantum/SMART", "Quantum_SMART"),
        quantum_go_live_date=parse_date(
            _col(row, "Quantum Go-Live Date", "Quantum_GoLive_Date")
        ),
        starting_arr=parse_number(_col(row, "Starting_ARR")),
        new_arr=parse_number(_col(row, "New_ARR", "New Business_ARR")),
        expansion_arr=parse_number(_col(row, "Expansion_ARR")),
        schedule_change=parse_number(
            _col(row, "Schedule Change", "Schedule_Change", "Schedule Change_ARR")
        ),
        contraction_arr=parse_number(_col(row, "Contraction_ARR")),
        churn_arr=parse_number(_col(row, "Churn_ARR")),
        ending_arr=parse_number(_col(row, "Ending_ARR")),
        region=_col(row, "Region"),
        vertical=_col(row, "Vertical"),
        segment=_col(row, "Segment"),
        contract_start_date=parse_date(_col(row, "Contract_Start_Date")),
        contract_end_date=parse_date(_col(row, "Contract_End_Date")),
        renewal_risk=_col(row, "Renewal_Risk"),
    )


def _sales_team(row: dict[str, str]) -> SalesTeamRecord:
    return SalesTeamRecord(
        sales_rep_id=_col(row, "Sales_Rep_ID"),
        name=_col(row, "Name"),
        email=_col(row, "Email"),
        role=_col(row, "Role"),
        region=_col(row, "Region"),
        vertical_focus=_col(row, "Vertical_Focus"),
        segment=_col(row, "Segment"),
        manager_id=_col(row, "Manager_ID"),
        manager_name=_col(row, "Manager_Name"),
        annual_quota=parse_number(_col(row, "Annual_Quota")),
        q1_quota=parse_number(_col(row, "Q1_Quota")),
        q2_quota=parse_number(_col(row, "Q2_Quota")),
        q3_quota=parse_number(_col(row, "Q3_Quota")),
        q4_quota=parse_number(_col(row, "Q4_Quota")),
        hire_date=parse_date(_col(row, "Hire_Date")),
        status=_col(row, "Status"),
    )


def _customer_mapping(row: dict[str, str]) -> CustomerNameMappingRecord:
    return CustomerNameMappingRecord(
        arr_customer_name=_col(row, "ARR_Customer_Name"),
        pipeline_customer_name=_col(row, "Pipeline_Customer_Name"),
    )


def _sow_mapping(row: dict[str, str]) -> SowMappingRecord:
    return SowMappingRecord(
        sow_id=normalize_numeric_id(_col(row, "SOW_ID")),
        sow_name=_col(row, "SOW Name", "SOW_Name"),
        vertical=_col(row, "Vertical"),
        region=_col(row, "Region"),
        fees_type=_col(row, "Fees_Type"),
        revenue_type=_col(row, "Revenue_Type"),
        segment_type=_col(row, "Segment_Type"),
        start_date=parse_date(_col(row, "Start_Date")),
    )


def _arr_sub_category(row: dict[str, str]) -> ArrSubCategoryRecord:
    return ArrSubCategoryRecord(
        sow_id=normalize_numeric_id(_col(row, "SOW_ID")),
        customer_name=_col(row, "Customer_Name"),
        product_sub_category=_col(row, "Product_Sub_Category"),
        pct_2024=parse_number(_col(row, "2024_Contribution_Pct")),
        pct_2025=parse_number(_col(row, "2025_Contribution_Pct")),
        pct_2026=parse_number(_col(row, "2026_Contribution_Pct")),
    )


def _product_category(row: dict[str, str]) -> ProductCategoryMappingRecord:
    return ProductCategoryMappingRecord(
        product_sub_category=_col(row, "Product_Sub_Category"),
        product_category=_col(row, "Product_Category"),
        description=_col(row, "Description"),
        status=_col(row, "Status"),
    )


def _prior_year(row: dict[str, str]) -> PriorYearPerformanceRecord:
    return PriorYearPerformanceRecord(
        year=int(parse_number(_col(row, "Year"))),
        sales_rep_id=_col(row, "Sales_Rep_ID"),
        sales_rep_name=_col(row, "Sales_Rep_Name"),
        region=_col(row, "Region"),
        annual_quota=parse_number(_col(row, "Annual_Quota")),
        q1_closed=parse_number(_col(row, "Q1_Closed")),
        q2_closed=parse_number(_col(row, "Q2_Closed")),
        q3_closed=parse_number(_col(row, "Q3_Closed")),
        q4_closed=parse_number(_col(row, "Q4_Closed")),
        total_closed=parse_number(_col(row, "Total_Closed")),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass
class DataStore:
    """All analytics datasets for one tenant plus the shared lookup indexes."""

    data_dir: Path
    closed_acv: list[ClosedAcvRecord] = field(default_factory=list)
    pipeline_snapshots: list[PipelineSnapshotRecord] = field(default_factory=list)
    arr_snapshots: list[ArrSnapshotRecord] = field(default_factory=list)
    sales_team: list[SalesTeamRecord] = field(default_factory=list)
    customer_name_mappings: list[CustomerNameMappingRecord] = field(default_factory=list)
    sow_mappings: list[SowMappingRecord] = field(default_factory=list)
    arr_sub_categories: list[ArrSubCategoryRecord] = field(default_factory=list)
    product_categories: list[ProductCategoryMappingRecord] = field(default_factory=list)
    prior_year_performance: list[PriorYearPerformanceRecord] = field(default_factory=list)

    sow_index: dict[str, SowMappingRecord] = field(default_factory=dict)
    product_category_index: dict[str, str] = field(default_factory=dict)
    customer_name_index: dict[str, str] = field(default_factory=dict)
    sub_categories_by_sow: dict[str, list[ArrSubCategoryRecord]] = field(
        default_factory=dict
    )

    @classmethod
    def load(cls, data_dir: str | Path) -> DataStore:
        """Read every known CSV under data_dir. Missing files yield empty datasets."""
        store = cls(data_dir=Path(data_dir))
        logger.info("Loading CSV data from %s", store.data_dir)

        if not store.data_dir.is_dir():
            logger.error("Data directory not found: %s", store.data_dir)
            return store

        rows = {name: store._read(name) for name in DATASET_FILES}

        store.closed_acv = [_closed_acv(r) for r in rows["closed_acv"]]
        store.pipeline_snapshots = [_pipeline(r) for r in rows["monthly_pipeline_snapshot"]]
        store.arr_snapshots = [_arr(r) for r in rows["monthly_arr_snapshot"]]
        store.sales_team = [_sales_team(r) for r in rows["sales_team_structure"]]
        store.customer_name_mappings = [
            _customer_mapping(r) for r in rows["customer_name_mapping"]
        ]
        store.sow_mappings = [_sow_mapping(r) for r in rows["sow_mapping"]]
        store.arr_sub_categories = [
            _arr_sub_category(r) for r in rows["arr_subcategory_breakdown"]
        ]
        store.product_categories = [
            _product_category(r)
            for r in rows["product_category_mapping"]
            if r.get("Product_Sub_Category")
        ]
        store.prior_year_performance = [
            _prior_year(r)
            for r in rows["prior_year_performance"]
            if r.get("Year")
        ]

        store.build_indexes()
        logger.info(
            "Loaded: %d closed ACV, %d pipeline snapshots, %d ARR snapshots, "
            "%d team members, %d SOW mappings, %d sub-categories, "
            "%d product categories, %d prior-year rows",
            len(store.closed_acv),
            len(store.pipeline_snapshots),
            len(store.arr_snapshots),
            len(store.sales_team),
            len(store.sow_mappings),
            len(store.arr_sub_categories),
            len(store.product_categories),
            len(store.prior_year_performance),
        )
        return store

    def _read(self, name: str) -> list[dict[str, str]]:
        path = self.data_dir / f"{name}.csv"
        if not path.is_file():
            # The prior-year file is optional; only its absence is expected.
            log = logger.info if name == "prior_year_performance" else logger.warning
            log("CSV file not found: %s", path)
            return []
        return read_csv_records(path)

    def build_indexes(self) -> None:
        self.sow_index = {m.sow_id: m for m in self.sow_mappings if m.sow_id}
        self.product_category_index = {
            m.product_sub_category: m.product_category
            for m in self.product_categories
            if m.product_sub_category
        }
        self.customer_name_index = {
            m.arr_customer_name: m.pipeline_customer_name
            for m in self.customer_name_mappings
            if m.arr_customer_name
        }
        self.sub_categories_by_sow = {}
        for record in self.arr_sub_categories:
            self.sub_categories_by_sow.setdefault(record.sow_id, []).append(record)

    def summary(self) -> dict[str, int]:
        """Row counts per dataset, keyed by CSV name."""
        return {
            "closed_acv": len(self.closed_acv),
            "monthly_pipeline_snapshot": len(self.pipeline_snapshots),
            "monthly_arr_snapshot": len(self.arr_snapshots),
            "sales_team_structure": len(self.sales_team),
            "customer_name_mapping": len(self.customer_name_mappings),
            "sow_mapping": len(self.sow_mappings),
            "arr_subcategory_breakdown": len(self.arr_sub_categories),
            "product_category_mapping": len(self.product_categories),
            "prior_year_performance": len(self.prior_year_performance),
        }


# ---------------------------------------------------------------------------
# Per-Tenant Registry — Lazy Singletons
# ---------------------------------------------------------------------------

_stores: dict[Path, DataStore] = {}


def resolve_data_dir(tenant_slug: str | None = None) -> Path:
    """<data_dir>/<tenant_slug> when that directory exists, else <data_dir>."""
    base = Path(settings.data_dir)
    if tenant_slug:
        tenant_dir = base / tenant_slug
        if tenant_dir.is_dir():
            return tenant_dir
    return base


def get_data_store(tenant_slug: str | None = None) -> DataStore:
    """Return the cached store for a tenant, loading it on first use.

    Stores are keyed by the directory they load from, so tenants that fall
    back to the shared root share one store.
    """
    data_dir = resolve_data_dir(tenant_slug)
    if data_dir not in _stores:
        _stores[data_dir] = DataStore.load(data_dir)
    return _stores[data_dir]


def reload_data_store(tenant_slug: str | None = None) -> DataStore:
    """Drop the cached store for a tenant (or all tenants) and reload it."""
    if tenant_slug is None:
        _stores.clear()
    else:
        _stores.pop(resolve_data_dir(tenant_slug), None)
    return get_data_store(tenant_slug)
