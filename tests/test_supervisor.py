# =============================================================================
# Unit Tests — Tab Supervisor and Agent Service
# =============================================================================
#
# The supervisors are built on the fixture tenant with a scripted LLM: the
# first reply is the router's JSON, the rest drive the chosen tab agent.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from app.agents.arr import arr_date_context, build_arr_supervisor
from app.agents.sales import build_sales_supervisor, sales_date_context
from app.agents.service import (
    LLM_UNAVAILABLE,
    NO_RESPONSE,
    AgentService,
    to_history_messages,
)
from app.agents.supervisor import TabAgent, parse_route_response
from app.services.data_store import DataStore
from app.services.llm import LLMResponse, ToolCall


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _collect(agen):
    return [event async for event in agen]


class ScriptedLLM:
    def __init__(self, *contents):
        self._responses = [
            c if isinstance(c, LLMResponse)
            else LLMResponse(content=c, model="test", input_tokens=0, output_tokens=0)
            for c in contents
        ]
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None, tools=None):
        self.calls.append({"messages": list(messages), "system": system, "max_tokens": max_tokens})
        return self._responses.pop(0)


def _tool_call(name: str, arguments: dict) -> LLMResponse:
    return LLMResponse(
        content="", model="test", input_tokens=0, output_tokens=0,
        tool_calls=[ToolCall(id="call_1", name=name, arguments=arguments)],
    )


TABS = {
    t.key: t
    for t in (
        TabAgent("overview", "Overview", 0, ""),
        TabAgent("movement", "ARR Movement", 1, ""),
    )
}


# ---------------------------------------------------------------------------
# Route parsing
# ---------------------------------------------------------------------------


class TestParseRouteResponse:
    def test_plain_json(self):
        decision = parse_route_response('{"tab": "movement", "reason": "bridge question"}', TABS)
        assert (decision.tab, decision.tab_label, decision.tab_index) == ("movement", "ARR Movement", 1)
        assert decision.reason == "bridge question"

    def test_json_inside_fences(self):
        content = '```json\n{"tab": "movement", "reason": "x"}\n```\nHope that helps'
        assert parse_route_response(content, TABS).tab == "movement"

    def test_unknown_tab_defaults_to_overview(self):
        decision = parse_route_response('{"tab": "weather"}', TABS)
        assert decision.tab == "overview"
        assert decision.reason == "Defaulting to Overview"

    def test_garbage_defaults_to_overview(self):
        decision = parse_route_response("I think movement", TABS)
        assert decision.tab == "overview"
        assert decision.reason == "Could not parse route, defaulting to Overview"

    def test_non_object_json(self):
        assert parse_route_response("[1, 2]", TABS).tab == "overview"


class TestDateContext:
    def test_arr_points_at_prior_month(self):
        text = arr_date_context(date(2026, 3, 15))
        assert "Latest ARR data month: Feb 2026" in text
        assert 'month: ["Feb"], year: ["2026"]' in text

    def test_arr_january_rolls_back_a_year(self):
        assert "Latest ARR data month: Dec 2025" in arr_date_context(date(2026, 1, 10))

    def test_sales_quarter(self):
        text = sales_date_context(date(2026, 5, 1))
        assert "Current quarter: Q2" in text
        assert 'pass quarter: ["Q2"]' in text


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class TestSupervisor:
    def test_routes_then_answers(self, store, today):
        llm = ScriptedLLM('{"tab": "movement", "reason": "ARR bridge"}', "ARR grew $0.01M")
        supervisor = build_arr_supervisor(llm, store, today=today)
        events = _run(_collect(supervisor.stream("u1", "why did ARR change?")))

        route = events[0]
        assert route.type == "route"
        assert route.content == "movement"
        assert route.metadata == {
            "tab": "ARR Movement", "tabIndex": 1, "reason": "ARR bridge", "agentKey": "arr_movement",
        }
        assert events[-1].type == "answer"
        assert events[-1].content == "ARR grew $0.01M"

    def test_router_call_is_short(self, store, today):
        llm = ScriptedLLM('{"tab": "overview"}', "ok")
        supervisor = build_sales_supervisor(llm, store, today=today)
        _run(_collect(supervisor.stream("u1", "pipeline?")))
        assert llm.calls[0]["max_tokens"] == 80
        # Sub-agent prompt carries today's date
        assert "Today: 2026-03-15" in llm.calls[1]["system"]

    def test_router_failure_falls_back(self, store, today):
        class FlakyRouter(ScriptedLLM):
            async def complete(self, messages, system=None, temperature=None, max_tokens=None, tools=None):
                if not self.calls:
                    self.calls.append({})
                    raise TimeoutError("router timed out")
                return await super().complete(messages, system, temperature, max_tokens, tools)

        llm = FlakyRouter("Sales look fine")
        supervisor = build_sales_supervisor(llm, store, today=today)
        events = _run(_collect(supervisor.stream("u1", "how are sales?")))
        assert events[0].type == "log"
        assert "Router error: router timed out" in events[0].content
        assert events[1].type == "route"
        assert events[1].content == "overview"
        assert events[1].metadata["reason"] == "Routing failed, defaulting to Overview"

    def test_tab_agent_calls_real_tool(self, store, today):
        llm = ScriptedLLM(
            '{"tab": "overview", "reason": "kpis"}',
            _tool_call("get_arr_overview_metrics", {"year": ["2026"], "month": ["Feb"]}),
            "Current ARR is $0.19M",
        )
        supervisor = build_arr_supervisor(llm, store, today=today)
        events = _run(_collect(supervisor.stream("u1", "current ARR?")))
        completed = [e for e in events if e.type == "action" and e.toolStatus == "completed"]
        assert [e.toolName for e in completed] == ["get_arr_overview_metrics"]
        assert '"currentARR": 185000' in completed[0].metadata["output"]


# ---------------------------------------------------------------------------
# Agent Service
# ---------------------------------------------------------------------------


class TestHistoryMessages:
    def test_roles_mapped(self):
        history = [
            {"role": "user", "content": "hi"},
            {"role": "agent", "content": "hello"},
            {"role": "system", "content": None},
        ]
        assert to_history_messages(history) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "assistant", "content": ""},
        ]

    def test_none(self):
        assert to_history_messages(None) == []


@pytest.fixture
def service_for(store, today):
    def _make(*contents):
        llm = ScriptedLLM(*contents)
        return AgentService(llm_factory=lambda: llm, store_factory=lambda slug: store, today=today)

    return _make


class TestAgentService:
    def test_no_llm(self, store):
        def _no_llm():
            raise ValueError("No LLM configured")

        service = AgentService(llm_factory=_no_llm, store_factory=lambda slug: store)
        events = _run(_collect(service.chat_stream("arr_revenue", "hi")))
        assert [(e.type, e.content) for e in events] == [("error", LLM_UNAVAILABLE), ("done", "")]

    def test_unknown_agent(self, service_for):
        events = _run(_collect(service_for().chat_stream("hr_agent", "hi")))
        assert [(e.type, e.content) for e in events] == [
            ("error", "Unknown agent: hr_agent"), ("done", ""),
        ]

    def test_stream_ends_with_done(self, service_for):
        service = service_for('{"tab": "overview"}', "All good")
        events = _run(_collect(service.chat_stream("sales_pipeline", "hi")))
        assert events[-1].type == "done"
        assert events[-2].type == "answer"

    def test_chat_aggregates_stream(self, service_for):
        service = service_for(
            '{"tab": "movement", "reason": "movers"}',
            _tool_call("get_movement_summary", {"year": ["2026"], "month": ["Feb"]}),
            "Net new ARR was $0.01M",
        )
        result = _run(service.chat("arr_revenue", "what moved?"))
        assert result["answer"] == "Net new ARR was $0.01M"
        assert result["route"] == "movement"
        assert result["error"] is None
        assert [c["tool"] for c in result["toolCalls"]] == ["get_movement_summary"]
        assert result["toolCalls"][0]["status"] == "completed"

    def test_chat_error_becomes_answer(self, service_for):
        result = _run(service_for().chat("hr_agent", "hi"))
        assert result["answer"] == "Unknown agent: hr_agent"
        assert result["error"] == "Unknown agent: hr_agent"

    def test_chat_without_answer(self, service_for):
        service = service_for('{"tab": "overview"}', "")
        result = _run(service.chat("sales_pipeline", "hi"))
        assert result["answer"] == NO_RESPONSE

    def test_supervisor_cached_until_store_changes(self, today, store):
        stores = {"current": store}
        llm = ScriptedLLM()
        service = AgentService(
            llm_factory=lambda: llm, store_factory=lambda slug: stores["current"], today=today
        )
        first = service._supervisor("arr_revenue", llm, "acme")
        assert service._supervisor("arr_revenue", llm, "acme") is first

        stores["current"] = DataStore(data_dir=store.data_dir)
        assert service._supervisor("arr_revenue", llm, "acme") is not first

    def test_list_agents(self, service_for):
        keys = [a.key for a in service_for().list_agents()]
        assert keys == ["sales_pipeline", "arr_revenue"]
