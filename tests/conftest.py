# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# The CSVs under tests/fixtures/data are a tiny, hand-checkable tenant:
# four ARR SOWs over Jan/Feb 2026, two pipeline snapshots, four closed
# deals and a five-person sales team. All analytics tests pin "today" to
# 2026-03-15, which makes Feb 2026 the latest closed ARR month.
# =============================================================================

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest

from app.services.data_store import DataStore

FIXTURE_DATA_DIR = Path(__file__).parent / "fixtures" / "data"
TODAY = date(2026, 3, 15)


@pytest.fixture(scope="session")
def fixture_data_dir() -> Path:
    return FIXTURE_DATA_DIR


@pytest.fixture(scope="session")
def today() -> Callable[[], date]:
    return lambda: TODAY


@pytest.fixture(scope="session")
def store() -> DataStore:
    return DataStore.load(FIXTURE_DATA_DIR)
