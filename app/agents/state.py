# =============================================================================
# Tool-Agent State Schema — LangGraph Reducers
# =============================================================================
#
# State that flows through every tool-agent graph (one per supervisor tab).
#
# MERGE RULES:
#   messages, tool_calls, logs   append (operator.add): nodes return only the
#                                new items and LangGraph concatenates them
#   everything else              replace: last write wins
#
# DESIGN DECISION: Plain dict messages, not LangChain message objects.
# The state stays JSON-serialisable and provider-neutral; the LLM layer
# translates to each SDK's wire format (see app/services/llm.py).
#
# DESIGN DECISION: Defaults live in initial_state(), not in the schema.
# TypedDict cannot carry defaults, and the graph always starts from
# initial_state(), so every key is present from the first node onwards.
# =============================================================================

from __future__ import annotations

import operator
from typing import Annotated, Any

from typing_extensions import TypedDict

DEFAULT_MAX_ITERATIONS = 10


class ToolCallRecord(TypedDict, total=False):
    """Bookkeeping for one executed tool call."""

    tool: str
    input: Any
    output: str
    id: str
    status: str  # "completed" | "error"


class ToolAgentState(TypedDict, total=False):
    """
    State for the bounded ReAct loop.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Conversation (append) ---
    messages: Annotated[list[dict[str, Any]], operator.add]

    # --- Input (set once by caller) ---
    user_id: str
    input: str

    # --- Loop control (replace) ---
    system_prompt: str
    iterations: int
    max_iterations: int

    # --- Bookkeeping (append) ---
    tool_calls: Annotated[list[ToolCallRecord], operator.add]
    logs: Annotated[list[str], operator.add]

    # --- Output (replace) ---
    final_answer: str | None
    error: str | None


def initial_state(
    user_id: str,
    input: str,
    system_prompt: str = "",
    history: list[dict[str, Any]] | None = None,
    max_iterations: int | None = None,
) -> ToolAgentState:
    """Full starting state: history, then the user's turn."""
    return {
        "messages": [*(history or []), {"role": "user", "content": input}],
        "user_id": user_id,
        "input": input,
        "system_prompt": system_prompt,
        "iterations": 0,
        "max_iterations": max_iterations or DEFAULT_MAX_ITERATIONS,
        "tool_calls": [],
        "logs": [],
        "final_answer": None,
        "error": None,
    }
