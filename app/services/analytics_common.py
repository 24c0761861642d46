# =============================================================================
# Shared Analytics Helpers — Rounding, Months, Sorting, Colours
# =============================================================================
#
# Both analytics services (ARR and sales) work on "YYYY-MM" month keys and
# report whole-dollar figures, so the month arithmetic and rounding rules
# live here once.
#
# DESIGN DECISION: Half-up rounding, not Python's banker's rounding.
# Dashboards and the agent must agree to the dollar with the figures finance
# already reports, which round .5 upwards. `round()` would turn 2.5 into 2.
# =============================================================================

from __future__ import annotations

import math
from datetime import date
from typing import Any

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
MONTH_NAME_TO_NUM = {name: f"{i + 1:02d}" for i, name in enumerate(MONTH_NAMES)}

COLORS = {
    "primary": "#3b82f6",
    "success": "#10b981",
    "warning": "#f59e0b",
    "danger": "#ef4444",
    "purple": "#8b5cf6",
    "gray": "#6b7280",
}


def js_round(value: float) -> int:
    """Round half up (2.5 → 3, -2.5 → -2)."""
    return int(math.floor(value + 0.5))


def round1(value: float) -> float:
    """Round to one decimal place, half up."""
    return js_round(value * 10) / 10


def round2(value: float) -> float:
    return js_round(value * 100) / 100


# ---------------------------------------------------------------------------
# Month keys
# ---------------------------------------------------------------------------


def month_key(value: date) -> str:
    return f"{value.year}-{value.month:02d}"


def add_months(ym: str, delta: int) -> str:
    """Shift a "YYYY-MM" key by delta months."""
    year, month = int(ym[:4]), int(ym[5:7])
    index = year * 12 + (month - 1) + delta
    return f"{index // 12}-{index % 12 + 1:02d}"


def prior_month(today: date) -> str:
    """The last fully closed month relative to today, as "YYYY-MM"."""
    return add_months(month_key(today), -1)


def month_range(start: str, end: str) -> list[str]:
    """Inclusive list of month keys from start to end."""
    months: list[str] = []
    cursor = start
    while cursor <= end:
        months.append(cursor)
        cursor = add_months(cursor, 1)
    return months


def month_label(ym: str, two_digit_year: bool = False) -> str:
    """"2026-02" → "Feb 2026" (or "Feb 26")."""
    name = MONTH_NAMES[int(ym[5:7]) - 1]
    year = ym[2:4] if two_digit_year else ym[:4]
    return f"{name} {year}"


def parse_iso(value: str) -> date | None:
    """Parse "YYYY-MM[-DD]" leniently. Unparseable values give None."""
    parts = value.split("-") if value else []
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 else 1
        day = int(parts[2][:2]) if len(parts) > 2 and parts[2][:2] else 1
        return date(year, month, day)
    except (ValueError, IndexError):
        return None


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def sort_rows(
    rows: list[dict[str, Any]],
    sort_field: str,
    sort_direction: str | None,
    fold_case: bool = False,
) -> list[dict[str, Any]]:
    """
    Sort result rows by one of their keys.

    Numbers compare numerically, everything else as strings. Direction is
    descending unless sort_direction == "asc".
    """
    reverse = sort_direction != "asc"

    def key(row: dict[str, Any]) -> tuple[int, Any]:
        value = row.get(sort_field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            text = "" if value is None else str(value)
            return (1, text.lower() if fold_case else text)
        return (0, value)

    return sorted(rows, key=key, reverse=reverse)
