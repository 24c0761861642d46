# =============================================================================
# Agent Service — Entry Point for Chat Requests
# =============================================================================
#
# Resolves the LLM and the tenant's data store, picks the supervisor for the
# requested agent and streams its events. Every stream ends with `done`.
#
# DESIGN DECISION: Supervisors cached per (agent, tenant) and data store.
# Building one compiles four LangGraph graphs. The cache entry is rebuilt
# when the tenant's store object changes (after POST /data/reload).
#
# DESIGN DECISION: No LLM is a stream error, not a startup failure.
# The analytics REST endpoints work without any LLM credentials, so the app
# boots without them and only the chat endpoints report the problem.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from datetime import date
from typing import Any

from app.agents.arr import build_arr_supervisor
from app.agents.configs import AGENT_CONFIGS, AgentConfig
from app.agents.sales import build_sales_supervisor
from app.agents.streaming import AgUiEvent
from app.agents.supervisor import Supervisor
from app.config import settings
from app.services.data_store import DataStore, get_data_store
from app.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

LLM_UNAVAILABLE = (
    "The AI agent is not available. Please configure OPENAI_API_KEY or Azure OpenAI "
    "credentials in the backend .env file."
)
NO_RESPONSE = "No response generated."

_BUILDERS: dict[str, Callable[..., Supervisor]] = {
    "sales_pipeline": build_sales_supervisor,
    "arr_revenue": build_arr_supervisor,
}


def to_history_messages(history: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """`user` stays user; every other role becomes assistant."""
    return [
        {
            "role": "user" if item.get("role") == "user" else "assistant",
            "content": item.get("content") or "",
        }
        for item in history or []
    ]


class AgentService:
    def __init__(
        self,
        llm_factory: Callable[[], LLMProvider] = get_llm_provider,
        store_factory: Callable[[str | None], DataStore] = get_data_store,
        today: Callable[[], date] = date.today,
    ):
        self._llm_factory = llm_factory
        self._store_factory = store_factory
        self._today = today
        self._supervisors: dict[tuple[str, str | None], tuple[DataStore, Supervisor]] = {}

    def list_agents(self) -> list[AgentConfig]:
        return list(AGENT_CONFIGS.values())

    def _llm(self) -> LLMProvider | None:
        try:
            return self._llm_factory()
        except ValueError as e:
            logger.warning("No LLM configured: %s", e)
            return None

    def _supervisor(
        self, agent_key: str, llm: LLMProvider, tenant_slug: str | None
    ) -> Supervisor:
        store = self._store_factory(tenant_slug)
        cached = self._supervisors.get((agent_key, tenant_slug))
        if cached is not None and cached[0] is store:
            return cached[1]
        supervisor = _BUILDERS[agent_key](llm, store, today=self._today)
        self._supervisors[(agent_key, tenant_slug)] = (store, supervisor)
        return supervisor

    async def chat_stream(
        self,
        agent_key: str,
        message: str,
        user_id: str = "anonymous",
        history: list[dict[str, Any]] | None = None,
        tenant_slug: str | None = None,
    ) -> AsyncIterator[AgUiEvent]:
        llm = self._llm()
        if llm is None:
            yield AgUiEvent(type="error", content=LLM_UNAVAILABLE)
            yield AgUiEvent(type="done")
            return

        if agent_key not in AGENT_CONFIGS:
            yield AgUiEvent(type="error", content=f"Unknown agent: {agent_key}")
            yield AgUiEvent(type="done")
            return

        try:
            supervisor = self._supervisor(agent_key, llm, tenant_slug)
            async for event in supervisor.stream(
                user_id=user_id,
                input=message,
                history=to_history_messages(history),
                max_iterations=settings.agent_max_iterations,
            ):
                yield event
        except Exception as e:
            logger.error("Agent stream error (%s): %s", agent_key, e)
            yield AgUiEvent(type="error", content=str(e) or "An unexpected error occurred")

        yield AgUiEvent(type="done")

    async def chat(
        self,
        agent_key: str,
        message: str,
        user_id: str = "anonymous",
        history: list[dict[str, Any]] | None = None,
        tenant_slug: str | None = None,
    ) -> dict[str, Any]:
        """
        Run a chat to completion.

        Returns {answer, toolCalls, route, error}. The answer falls back to
        "No response generated." and, when nothing else was produced, to the
        stream's error message.
        """
        answer = ""
        route: str | None = None
        errors: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        async for event in self.chat_stream(agent_key, message, user_id, history, tenant_slug):
            if event.type == "answer":
                answer = event.content
            elif event.type == "route":
                route = event.content
            elif event.type == "error":
                errors.append(event.content)
            elif event.type == "action" and event.toolStatus in ("completed", "error"):
                meta = event.metadata or {}
                tool_calls.append({
                    "tool": event.toolName,
                    "input": meta.get("input"),
                    "output": meta.get("output"),
                    "status": event.toolStatus,
                })

        error = "; ".join(errors) or None
        if not answer and error:
            answer = error
        return {
            "answer": answer or NO_RESPONSE,
            "toolCalls": tool_calls,
            "route": route,
            "error": error,
        }


_service: AgentService | None = None


def get_agent_service() -> AgentService:
    global _service
    if _service is None:
        _service = AgentService()
    return _service
