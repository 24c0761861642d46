# =============================================================================
# Tool-Agent Graph — Bounded ReAct Loop on LangGraph
# =============================================================================
#
# GRAPH TOPOLOGY:
#
#   START ──▶ agent ──(tool calls and iterations < max)──▶ tools ──┐
#               ▲  └──(final answer or iteration cap)──▶ END       │
#               └──────────────────────────────────────────────────┘
#
#   agent   one LLM call with the system prompt, the conversation and the
#           bound tool schemas; counts the iteration
#   tools   runs every tool call from the last assistant message, in order,
#           and appends one tool message plus one bookkeeping record each
#
# DESIGN DECISION: Tool failures are observations, not exceptions.
# A tool that raises, an unknown tool name, or arguments that fail
# validation all produce a tool message formatted by format_tool_error().
# The model sees the error and can retry or explain, and the loop goes on.
#
# DESIGN DECISION: Two stop guards.
# 1. iterations >= max_iterations: the graph ends with an `error` in state.
# 2. LangGraph's recursion_limit ((max_iterations or 10) * 2 + 1) as a
#    backstop against a routing bug; surfaces as an error event.
#
# DESIGN DECISION: Tools run in a worker thread.
# tool.invoke is a synchronous, CPU-bound computation over the data store.
# asyncio.to_thread keeps it off the event loop shared with other chats.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from langgraph.graph import END, START, StateGraph

from app.agents.state import DEFAULT_MAX_ITERATIONS, ToolAgentState, initial_state
from app.agents.streaming import AgUiDedupeEmitter, AgUiEvent
from app.agents.tools.base import AgentTool, tools_by_name
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)


def format_tool_error(tool_name: str, error: object) -> str:
    return f'Error executing tool "{tool_name}": {error}'


def recursion_limit(max_iterations: int | None) -> int:
    return (max_iterations or DEFAULT_MAX_ITERATIONS) * 2 + 1


def _pending_tool_calls(state: ToolAgentState) -> list[dict[str, Any]]:
    messages = state.get("messages") or []
    if not messages:
        return []
    last = messages[-1]
    if last.get("role") != "assistant":
        return []
    return last.get("tool_calls") or []


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------


def build_tool_agent_graph(
    llm: LLMProvider,
    tools: list[AgentTool],
    system_prompt: str | None = None,
):
    """
    Compile a tool-agent graph bound to one LLM and one tool set.

    The state's system_prompt wins over the one given here, so a single
    compiled graph can serve callers with different date contexts.
    """
    registry = tools_by_name(tools)
    tool_schemas = [t.schema() for t in tools]

    async def agent_node(state: ToolAgentState) -> dict:
        max_iterations = state.get("max_iterations") or DEFAULT_MAX_ITERATIONS
        iterations = (state.get("iterations") or 0) + 1

        response = await llm.complete(
            messages=state.get("messages") or [],
            system=state.get("system_prompt") or system_prompt or None,
            tools=tool_schemas or None,
        )

        message: dict[str, Any] = {"role": "assistant", "content": response.content}
        update: dict[str, Any] = {"iterations": iterations}

        if response.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in response.tool_calls]
            logs = [f"Iteration {iterations}/{max_iterations}: {len(response.tool_calls)} tool call(s)"]
            if iterations >= max_iterations:
                error = f"Agent stopped after {max_iterations} iterations without a final answer."
                logger.warning(error)
                logs.append(error)
                update["error"] = error
        else:
            update["final_answer"] = response.content
            logs = [f"Iteration {iterations}/{max_iterations}: final answer"]

        update["messages"] = [message]
        update["logs"] = logs
        return update

    async def tools_node(state: ToolAgentState) -> dict:
        tool_messages: list[dict[str, Any]] = []
        records: list[dict[str, Any]] = []

        for call in _pending_tool_calls(state):
            name, call_id = call["name"], call["id"]
            arguments = call.get("arguments") or {}
            tool = registry.get(name)
            status = "completed"
            try:
                if tool is None:
                    raise LookupError(f"Unknown tool: {name}")
                output = await asyncio.to_thread(tool.invoke, arguments)
            except Exception as e:
                logger.warning("Tool %s failed: %s", name, e)
                output = format_tool_error(name, e)
                status = "error"

            tool_messages.append({
                "role": "tool",
                "tool_call_id": call_id,
                "name": name,
                "content": output,
            })
            records.append({
                "tool": name,
                "input": arguments,
                "output": output,
                "id": call_id,
                "status": status,
            })

        return {"messages": tool_messages, "tool_calls": records}

    def route_after_agent(state: ToolAgentState) -> str:
        iterations = state.get("iterations") or 0
        max_iterations = state.get("max_iterations") or DEFAULT_MAX_ITERATIONS
        if _pending_tool_calls(state) and iterations < max_iterations:
            return "tools"
        return END

    builder = StateGraph(ToolAgentState)
    builder.add_node("agent", agent_node)
    builder.add_node("tools", tools_node)
    builder.add_edge(START, "agent")
    builder.add_conditional_edges("agent", route_after_agent, ["tools", END])
    builder.add_edge("tools", "agent")
    return builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_tool_agent(
    graph,
    user_id: str,
    input: str,
    system_prompt: str = "",
    history: list[dict[str, Any]] | None = None,
    max_iterations: int | None = None,
) -> ToolAgentState:
    """Run the loop to completion and return the final state."""
    state = initial_state(user_id, input, system_prompt, history, max_iterations)
    return await graph.ainvoke(
        state, config={"recursion_limit": recursion_limit(max_iterations)}
    )


async def stream_tool_agent(
    graph,
    user_id: str,
    input: str,
    system_prompt: str = "",
    history: list[dict[str, Any]] | None = None,
    max_iterations: int | None = None,
    emitter: AgUiDedupeEmitter | None = None,
) -> AsyncIterator[AgUiEvent]:
    """
    Stream the loop as AG-UI events.

    Every state snapshot goes through the dedupe emitter. Any failure,
    including hitting the recursion limit, ends the stream with one
    `error` event instead of raising.
    """
    emitter = emitter or AgUiDedupeEmitter()
    state = initial_state(user_id, input, system_prompt, history, max_iterations)
    try:
        async for snapshot in graph.astream(
            state,
            config={"recursion_limit": recursion_limit(max_iterations)},
            stream_mode="values",
        ):
            for event in emitter.emit_from_state(snapshot):
                yield event
    except Exception as e:
        logger.error("Tool agent stream failed: %s", e)
        yield AgUiEvent(type="error", content=str(e) or e.__class__.__name__)
