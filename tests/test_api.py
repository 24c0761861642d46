# =============================================================================
# Integration Tests — HTTP API
# =============================================================================
#
# Runs the real FastAPI app through TestClient with auth disabled. The
# agent service, the compute objects and the data store are swapped for
# fixture-backed instances via dependency_overrides, so no database,
# Redis or LLM is needed.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.agents.service import AgentService, get_agent_service
from app.agents.streaming import AgUiEvent
from app.api import revenue, sales
from app.api.agent import ndjson_stream
from app.api.deps import get_current_api_key, query_filters
from app.config import settings
from app.main import create_app
from app.models.filters import RevenueFilters
from app.services.llm import LLMResponse, ToolCall
from app.services.revenue_compute import RevenueCompute
from app.services.sales_compute import SalesCompute


class ScriptedLLM:
    def __init__(self, *contents):
        self._responses = [
            c if isinstance(c, LLMResponse)
            else LLMResponse(content=c, model="test", input_tokens=0, output_tokens=0)
            for c in contents
        ]

    async def complete(self, messages, system=None, temperature=None, max_tokens=None, tools=None):
        return self._responses.pop(0)


@pytest.fixture
def llm_script():
    """Mutable list of replies for the next chat; tests append to it."""
    return []


@pytest.fixture
def client(store, today, llm_script):
    app = create_app()
    service = AgentService(
        llm_factory=lambda: ScriptedLLM(*llm_script),
        store_factory=lambda slug: store,
        today=today,
    )
    app.dependency_overrides[get_current_api_key] = lambda: None
    app.dependency_overrides[get_agent_service] = lambda: service
    app.dependency_overrides[revenue.get_revenue_compute] = lambda: RevenueCompute(store, today=today)
    app.dependency_overrides[sales.get_sales_compute] = lambda: SalesCompute(store, today=today)

    with (
        patch.object(settings, "audit_logging_enabled", False),
        patch.object(settings, "db_auto_create", False),
        patch("app.api.agent._persist_run", new_callable=AsyncMock) as persist,
        patch("app.api.data.get_data_store", return_value=store),
        TestClient(app) as test_client,
    ):
        test_client.persist_run = persist
        yield test_client


# ---------------------------------------------------------------------------
# Health & Data
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["version"] == settings.app_version


class TestDataSummary:
    def test_counts(self, client, store):
        response = client.get("/data/summary")
        assert response.status_code == 200
        body = response.json()
        assert body["tenant"] == settings.default_tenant_slug
        assert body["counts"] == store.summary()
        assert body["counts"]["closed_acv"] == 4


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class TestAgentConfigs:
    def test_lists_public_configs(self, client):
        response = client.get("/agent/configs")
        assert response.status_code == 200
        configs = response.json()
        assert [c["key"] for c in configs] == ["sales_pipeline", "arr_revenue"]
        assert all("systemPrompt" not in c for c in configs)
        assert configs[0]["suggestedQueries"]


class TestChat:
    def test_answer_with_tool_calls(self, client, llm_script):
        llm_script.extend([
            '{"tab": "overview", "reason": "kpis"}',
            LLMResponse(
                content="", model="test", input_tokens=0, output_tokens=0,
                tool_calls=[ToolCall(
                    id="call_1",
                    name="get_arr_overview_metrics",
                    arguments={"year": ["2026"], "month": ["Feb"]},
                )],
            ),
            "Current ARR is $0.19M",
        ])
        response = client.post(
            "/agent/chat",
            json={"message": "What is current ARR?", "agentKey": "arr_revenue"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Current ARR is $0.19M"
        assert [c["tool"] for c in body["toolCalls"]] == ["get_arr_overview_metrics"]
        assert client.persist_run.await_count == 1
        assert client.persist_run.await_args.kwargs["agent_key"] == "arr_revenue"

    def test_unknown_agent_is_404(self, client):
        response = client.post("/agent/chat", json={"message": "hi", "agentKey": "hr_agent"})
        assert response.status_code == 404

    @pytest.mark.parametrize(("error", "status"), [
        (ValueError("no data"), 503),
        (RuntimeError("boom"), 502),
    ])
    def test_service_failure_mapped(self, client, error, status):
        failing = MagicMock()
        failing.chat = AsyncMock(side_effect=error)
        client.app.dependency_overrides[get_agent_service] = lambda: failing
        response = client.post("/agent/chat", json={"message": "hi", "agentKey": "arr_revenue"})
        assert response.status_code == status
        assert client.persist_run.await_count == 0

    def test_empty_message_is_422(self, client):
        response = client.post("/agent/chat", json={"message": "", "agentKey": "arr_revenue"})
        assert response.status_code == 422


class TestChatStream:
    def _events(self, response) -> list[dict]:
        return [json.loads(line) for line in response.text.splitlines() if line.strip()]

    def test_ndjson_events_end_with_done(self, client, llm_script):
        llm_script.extend(['{"tab": "pipeline", "reason": "pipeline question"}', "Pipeline is flat"])
        response = client.post(
            "/agent/chat/stream",
            json={"message": "How did pipeline move?", "agentKey": "sales_pipeline"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert response.text.startswith("\n")

        events = [e for e in self._events(response) if e["type"] != "ping"]
        assert events[0]["type"] == "route"
        assert events[0]["content"] == "pipeline"
        assert events[-2] == {"type": "answer", "content": "Pipeline is flat"}
        assert events[-1]["type"] == "done"

    def test_unknown_agent_streams_error(self, client):
        response = client.post("/agent/chat/stream", json={"message": "hi", "agentKey": "hr_agent"})
        assert response.status_code == 200
        assert [e["type"] for e in self._events(response)] == ["error", "done"]


class TestNdjsonStream:
    def _request(self, *disconnected: bool) -> MagicMock:
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[*disconnected] + [False] * 100)
        return request

    def _lines(self, request, events, ping_interval: float) -> list[str]:
        async def collect():
            return [line async for line in ndjson_stream(request, events, ping_interval)]

        return asyncio.run(collect())

    def test_pings_while_source_is_silent(self):
        async def slow_events():
            await asyncio.sleep(0.1)
            yield AgUiEvent(type="answer", content="Pipeline is flat")
            yield AgUiEvent(type="done")

        lines = self._lines(self._request(), slow_events(), ping_interval=0.01)
        assert lines[0] == "\n"
        events = [json.loads(line) for line in lines[1:]]
        assert events[0]["type"] == "ping"
        assert [e["type"] for e in events if e["type"] != "ping"] == ["answer", "done"]

    def test_disconnect_stops_and_closes_source(self):
        closed = []

        async def endless_events():
            try:
                await asyncio.sleep(10)
                yield AgUiEvent(type="answer", content="never sent")
            finally:
                closed.append(True)

        lines = self._lines(self._request(False, True), endless_events(), ping_interval=0.01)
        assert lines == ["\n", AgUiEvent(type="ping").to_ndjson()]
        assert closed == [True]


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TestRevenueEndpoints:
    def test_overview(self, client):
        response = client.get("/revenue/overview", params={"year": "2026", "month": "Feb"})
        assert response.status_code == 200
        assert response.json()["currentARR"] == 185000

    def test_movement_summary(self, client):
        response = client.get(
            "/revenue/movement/summary",
            params={"year": "2026", "month": "Feb", "lookbackPeriod": "1"},
        )
        assert response.status_code == 200
        assert response.json()["endingARR"] == 185000

    def test_customers_search(self, client):
        response = client.get(
            "/revenue/customers", params={"year": "2026", "month": "Feb", "search": "acme"}
        )
        assert [c["customerName"] for c in response.json()["customers"]] == ["Acme Corp"]

    def test_invalid_lookback_is_422(self, client):
        response = client.get("/revenue/movement/summary", params={"lookbackPeriod": "0"})
        assert response.status_code == 422


class TestSalesEndpoints:
    def test_overview_revenue_type(self, client):
        response = client.get("/sales/overview", params={"year": "2026", "revenueType": "License"})
        assert response.status_code == 200
        assert response.json()["totalClosedACV"] == 75000

    def test_monte_carlo_seeded(self, client):
        params = {"year": "2026", "iterations": "200", "seed": "11"}
        first = client.get("/sales/monte-carlo", params=params).json()
        second = client.get("/sales/monte-carlo", params=params).json()
        assert first == second
        assert first["iterations"] == 200

    def test_bad_iterations_is_422(self, client):
        response = client.get("/sales/monte-carlo", params={"iterations": "abc"})
        assert response.status_code == 422

    def test_bad_quarter_is_422(self, client):
        response = client.get(
            "/sales/pipeline/movement", params={"year": "2026", "quarter": "Quarter 1"}
        )
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Query-string filters
# ---------------------------------------------------------------------------


def _request(query: bytes) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "query_string": query, "headers": []})


class TestQueryFilters:
    def test_lists_collect_and_scalars_take_last(self):
        dependency = query_filters(RevenueFilters)
        filters = dependency(_request(
            b"region=Europe&region=APAC&quantumSmart=Quantum&quantumSmart=SMART&unknown=1"
        ))
        assert filters.region == ["Europe", "APAC"]
        assert filters.quantum_smart == "SMART"

    def test_no_params(self):
        filters = query_filters(RevenueFilters)(_request(b""))
        assert filters.year is None
