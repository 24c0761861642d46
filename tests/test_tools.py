# =============================================================================
# Unit Tests — Agent Tools
# =============================================================================
#
# Tools are thin wrappers over the analytics services, so these tests check
# the wrapping: names per tab, the JSON Schema the LLM sees, argument
# validation, JSON output and list truncation.
# =============================================================================

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from app.agents.tools import (
    AgentTool,
    create_arr_tools,
    create_sales_tools,
    tools_by_name,
    truncated_list,
)
from app.config import settings
from app.models.filters import RevenueFilters
from app.services.revenue_compute import RevenueCompute
from app.services.sales_compute import SalesCompute


@pytest.fixture
def arr_tools(store, today) -> dict[str, list[AgentTool]]:
    return create_arr_tools(RevenueCompute(store, today=today))


@pytest.fixture
def sales_tools(store, today) -> dict[str, list[AgentTool]]:
    return create_sales_tools(SalesCompute(store, today=today))


def _all(tools: dict[str, list[AgentTool]]) -> dict[str, AgentTool]:
    return tools_by_name([t for tab in tools.values() for t in tab])


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


class TestCatalogue:
    def test_arr_tabs(self, arr_tools):
        assert list(arr_tools) == ["overview", "movement", "customers", "products"]
        assert [t.name for t in arr_tools["overview"]] == [
            "get_arr_overview_metrics", "get_arr_trend", "get_arr_by_dimension",
        ]
        assert len(_all(arr_tools)) == 12

    def test_sales_tabs(self, sales_tools):
        assert list(sales_tools) == ["overview", "forecast", "pipeline", "yoy"]
        assert [t.name for t in sales_tools["yoy"]] == [
            "get_sales_rep_performance", "get_monthly_attainment_heatmap",
        ]
        assert len(_all(sales_tools)) == 14

    def test_names_unique_across_tabs(self, arr_tools, sales_tools):
        for tools in (arr_tools, sales_tools):
            names = [t.name for tab in tools.values() for t in tab]
            assert len(names) == len(set(names))


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchema:
    def test_schema_uses_camel_case_aliases(self, arr_tools):
        tool = _all(arr_tools)["get_movement_customers"]
        schema = tool.schema()
        assert schema["name"] == "get_movement_customers"
        assert "title" not in schema["parameters"]
        properties = schema["parameters"]["properties"]
        assert "movementType" in properties
        assert "lookbackPeriod" in properties
        assert "movement_type" not in properties

    def test_sales_schema(self, sales_tools):
        properties = _all(sales_tools)["run_monte_carlo"].schema()["parameters"]["properties"]
        assert {"iterations", "seed", "revenueType", "logoType"} <= set(properties)


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


class TestInvoke:
    def test_returns_json(self, arr_tools):
        tool = _all(arr_tools)["get_arr_overview_metrics"]
        result = json.loads(tool.invoke({"year": ["2026"], "month": ["Feb"]}))
        assert result["currentARR"] == 185000

    def test_empty_filters_ignored(self, arr_tools):
        tool = _all(arr_tools)["get_movement_summary"]
        result = json.loads(tool.invoke({"year": ["2026"], "month": ["Feb"], "region": [], "quantumSmart": ""}))
        assert result["endingARR"] == 185000

    def test_none_arguments(self, sales_tools):
        tool = _all(sales_tools)["get_overview_funnel"]
        assert "stages" in json.loads(tool.invoke(None))

    def test_invalid_arguments_raise(self, arr_tools):
        tool = _all(arr_tools)["get_movement_summary"]
        with pytest.raises(ValidationError):
            tool.invoke({"lookbackPeriod": 0})

    def test_list_tool_is_truncated_shape(self, arr_tools):
        tool = _all(arr_tools)["get_movement_customers"]
        result = json.loads(tool.invoke({"year": ["2026"], "month": ["Feb"]}))
        assert result["total"] == 4
        assert result["truncated"] is False
        assert result["data"][0]["customerName"] == "Gamma Pharma"

    def test_string_result_passed_through(self):
        tool = AgentTool("echo", "Echo", RevenueFilters, lambda f: "plain text")
        assert tool.invoke({}) == "plain text"


class TestTruncatedList:
    def test_under_limit(self):
        assert truncated_list([1, 2], max_items=5) == {"data": [1, 2], "truncated": False, "total": 2}

    def test_over_limit(self):
        assert truncated_list(list(range(10)), max_items=3) == {
            "data": [0, 1, 2], "truncated": True, "total": 10,
        }

    def test_default_limit_from_settings(self):
        with patch.object(settings, "tool_max_items", 2):
            assert truncated_list(["a", "b", "c"])["data"] == ["a", "b"]

    def test_customers_tool_respects_setting(self, arr_tools):
        tool = _all(arr_tools)["get_customers_list"]
        with patch.object(settings, "tool_max_items", 1):
            result = json.loads(tool.invoke({"year": ["2026"], "month": ["Feb"]}))
        assert result["truncated"] is True
        assert result["total"] == 4
        assert [c["customerName"] for c in result["data"]] == ["Acme Corp"]
