# =============================================================================
# CSV Parser — Quote-Aware Parsing and Field Normalisers
# =============================================================================
#
# The analytics exports come out of Excel and a CRM, so they have a few quirks:
#   - quoted cells that contain commas, doubled quotes ("") and even newlines
#   - UTF-8 byte-order marks and padded headers
#   - currency / percentage formatting ("$1,234.50", "35%")
#   - numeric IDs that Excel rewrote into scientific notation ("3.08157E+11")
#   - US dates with 2-digit years ("3/1/26")
#   - several spellings of the same logo type or region code
#
# DESIGN DECISION: pandas reads every column as str with NA detection off.
# Region code "NA" and Excel IDs like "3.08157E+11" must reach the
# normalisers untouched; all numeric conversion happens in parse_number().
# Embedded newlines are folded into spaces and every cell is trimmed, so
# downstream code never sees multi-line values.
# =============================================================================

from __future__ import annotations

import math
import re
from pathlib import Path
from typing import IO

import pandas as pd
from pandas.errors import EmptyDataError

_SCIENTIFIC_RE = re.compile(r"^[\d.]+E\+\d+$", re.IGNORECASE)
_NUMBER_NOISE_RE = re.compile(r"[$%\s,]")

_REGION_CODES = {
    "NA": "North America",
    "EU": "Europe",
    "ME": "Middle East",
    "APAC": "APAC",
    "LA": "LATAM",
    "LATAM": "LATAM",
    "Global": "Global",
}


def read_csv_records(source: str | Path | IO[str]) -> list[dict[str, str]]:
    """
    Read a CSV export into a list of {header: value} dicts.

    Accepts a path or an open text buffer. Headers and cells are trimmed,
    short rows are padded with "" and rows where every value is empty are
    dropped. An empty file gives [].
    """
    try:
        frame = pd.read_csv(
            source,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            index_col=False,
            encoding="utf-8-sig",
        )
    except EmptyDataError:
        return []
    if frame.empty:
        return []

    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.fillna("").apply(
        lambda column: column.str.replace(r"[\r\n]", " ", regex=True).str.strip()
    )
    frame = frame[(frame != "").any(axis=1)]
    return frame.to_dict(orient="records")


def parse_number(value: str | None) -> float:
    """Parse "$1,234.50" / "35%" / " 12 " into a float. Garbage gives 0."""
    if not value:
        return 0.0
    cleaned = _NUMBER_NOISE_RE.sub("", value)
    match = re.match(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", cleaned)
    if not match:
        return 0.0
    number = float(match.group(0))
    return 0.0 if math.isnan(number) else number


def normalize_numeric_id(raw: str | None) -> str:
    """Undo Excel's scientific notation on IDs: "3.08157E+11" → "308157000000"."""
    if not raw:
        return ""
    trimmed = raw.strip()
    if _SCIENTIFIC_RE.match(trimmed):
        try:
            number = float(trimmed)
        except ValueError:
            return trimmed
        if math.isfinite(number):
            return f"{number:.0f}"
    return trimmed


def parse_date(value: str | None) -> str:
    """Convert M/D/YY or M/D/YYYY to ISO YYYY-MM-DD. Anything else is returned trimmed."""
    if not value:
        return ""
    trimmed = value.strip()
    parts = trimmed.split("/")
    if len(parts) == 3:
        month = parts[0].zfill(2)
        day = parts[1].zfill(2)
        year = f"20{parts[2]}" if len(parts[2]) == 2 else parts[2]
        return f"{year}-{month}-{day}"
    return trimmed


def normalize_logo_type(raw: str | None) -> str:
    trimmed = (raw or "").strip()
    if trimmed in ("New", "New Logo"):
        return "New Logo"
    if trimmed in ("Cross Sell", "Cross-Sell"):
        return "Cross-Sell"
    if trimmed in ("Renewal/Extn", "Renewal/Extension"):
        return "Extension"
    return trimmed


def normalize_region(raw: str | None) -> str:
    trimmed = (raw or "").strip()
    return _REGION_CODES.get(trimmed, trimmed)
