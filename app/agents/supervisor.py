# =============================================================================
# Tab Supervisor — Route a Query, Then Delegate to One Sub-Agent
# =============================================================================
#
# ARCHITECTURE:
#
#   user query ──▶ router (one small LLM call, JSON reply)
#                     │
#                     ▼  {"type":"route", ...}
#        ┌────────────┼────────────┬────────────┐
#        ▼            ▼            ▼            ▼
#     tab agent    tab agent    tab agent    tab agent
#     (tool_agent graph, own tools + own prompt)
#
# The ARR and Sales supervisors (app/agents/arr.py, app/agents/sales.py) are
# both instances of Supervisor; they differ only in tabs, prompts and tools.
#
# DESIGN DECISION: Routing never fails the request.
# A router exception, an unparseable reply or an unknown tab all fall back
# to the overview tab. The stream still answers, and the reason says why.
#
# DESIGN DECISION: Date context is rendered per request.
# Sub-agent graphs are compiled once at build time, but "today" moves, so
# the prompt with the date context goes in through the initial state.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.agents.streaming import AgUiDedupeEmitter, AgUiEvent
from app.agents.tool_agent import build_tool_agent_graph, stream_tool_agent
from app.agents.tools.base import AgentTool
from app.config import settings
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_TAB = "overview"
SUPERVISOR_MAX_ITERATIONS = 15

_JSON_OBJECT = re.compile(r"\{[\s\S]*?\}")


@dataclass
class TabAgent:
    """One dashboard tab: its label, position, prompt and tools."""

    key: str
    label: str
    index: int
    prompt: str
    tools: list[AgentTool] = field(default_factory=list)


@dataclass
class RouteDecision:
    tab: str
    tab_label: str
    tab_index: int
    reason: str


def _default_route(tabs: dict[str, TabAgent], reason: str) -> RouteDecision:
    tab = tabs[DEFAULT_TAB]
    return RouteDecision(tab=tab.key, tab_label=tab.label, tab_index=tab.index, reason=reason)


def parse_route_response(content: str, tabs: dict[str, TabAgent]) -> RouteDecision:
    """
    Read the router's reply.

    The first {...} object in the text wins, so replies wrapped in markdown
    fences or followed by chatter still parse.
    """
    match = _JSON_OBJECT.search(content or "")
    raw = match.group(0) if match else content
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return _default_route(tabs, "Could not parse route, defaulting to Overview")
    if not isinstance(parsed, dict):
        return _default_route(tabs, "Could not parse route, defaulting to Overview")

    key = parsed.get("tab") or DEFAULT_TAB
    tab = tabs.get(key) if isinstance(key, str) else None
    if tab is None:
        return _default_route(tabs, "Defaulting to Overview")
    return RouteDecision(
        tab=tab.key,
        tab_label=tab.label,
        tab_index=tab.index,
        reason=str(parsed.get("reason") or ""),
    )


class Supervisor:
    """Router plus one compiled tool-agent graph per tab."""

    def __init__(
        self,
        llm: LLMProvider,
        name: str,
        agent_prefix: str,
        router_prompt: str,
        tabs: list[TabAgent],
        date_context: Callable[[date], str],
        today: Callable[[], date] = date.today,
    ):
        self.llm = llm
        self.name = name
        self.agent_prefix = agent_prefix
        self.router_prompt = router_prompt
        self.tabs = {t.key: t for t in tabs}
        self.date_context = date_context
        self.today = today
        self.graphs = {
            t.key: build_tool_agent_graph(llm, t.tools, t.prompt) for t in tabs
        }
        logger.info(
            "%s supervisor built: %s",
            name,
            ", ".join(f"{t.key}={len(t.tools)} tools" for t in tabs),
        )

    def system_prompt_for(self, tab: str) -> str:
        return self.tabs[tab].prompt + self.date_context(self.today())

    async def route(
        self, input: str, history: list[dict[str, Any]] | None = None
    ) -> tuple[RouteDecision, list[AgUiEvent]]:
        """Classify the query. Returns the decision and any log events."""
        messages = list(history or []) + [{"role": "user", "content": input}]
        try:
            response = await self.llm.complete(
                messages=messages,
                system=self.router_prompt,
                max_tokens=settings.router_max_tokens,
            )
        except Exception as e:
            logger.warning("%s router failed: %s", self.name, e)
            decision = _default_route(self.tabs, "Routing failed, defaulting to Overview")
            return decision, [
                AgUiEvent(type="log", content=f"Router error: {e}. Defaulting to Overview.")
            ]

        decision = parse_route_response(response.content, self.tabs)
        logger.info("%s routed to %s (%s)", self.name, decision.tab, decision.reason)
        return decision, []

    def route_event(self, decision: RouteDecision) -> AgUiEvent:
        return AgUiEvent(
            type="route",
            content=decision.tab,
            metadata={
                "tab": decision.tab_label,
                "tabIndex": decision.tab_index,
                "reason": decision.reason,
                "agentKey": f"{self.agent_prefix}_{decision.tab}",
            },
        )

    async def stream(
        self,
        user_id: str,
        input: str,
        history: list[dict[str, Any]] | None = None,
        max_iterations: int | None = SUPERVISOR_MAX_ITERATIONS,
    ) -> AsyncIterator[AgUiEvent]:
        """Route, announce the route, then stream the chosen sub-agent."""
        decision, logs = await self.route(input, history)
        for event in logs:
            yield event
        yield self.route_event(decision)

        async for event in stream_tool_agent(
            self.graphs[decision.tab],
            user_id=user_id,
            input=input,
            system_prompt=self.system_prompt_for(decision.tab),
            history=history,
            max_iterations=max_iterations,
            emitter=AgUiDedupeEmitter(),
        ):
            yield event
