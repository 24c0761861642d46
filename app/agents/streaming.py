# =============================================================================
# Agent Stream Events — AG-UI Event Model and State Dedupe
# =============================================================================
#
# The chat stream is newline-delimited JSON, one AgUiEvent per line:
#
#   {"type":"route","content":"movement","metadata":{...}}
#   {"type":"action","content":"get_movement_summary","toolStatus":"calling",...}
#   {"type":"observation","content":"{...tool output...}","toolName":...}
#   {"type":"answer","content":"ARR grew 2.1% ..."}
#   {"type":"done","content":""}
#
# DESIGN DECISION: Dedupe full-state snapshots instead of streaming deltas.
# LangGraph's stream_mode="values" yields the whole state after every step.
# The emitter remembers what it has already sent (logs, tool calls, tool
# messages, answers, errors) and turns each snapshot into only the new
# events. Re-emitting the same snapshot yields nothing.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

EventType = Literal[
    "log", "answer", "thought", "action", "observation", "error", "done", "ping", "route"
]


class AgUiEvent(BaseModel):
    """One stream event. Serialised with camelCase keys, None fields omitted."""

    model_config = ConfigDict(populate_by_name=True)

    type: EventType
    content: str = ""
    data: Any = None
    toolName: str | None = None
    toolId: str | None = None
    toolStatus: str | None = None
    metadata: dict[str, Any] | None = None

    def to_ndjson(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), default=str) + "\n"


class AgUiDedupeEmitter:
    """Turns repeated state snapshots into new events only."""

    def __init__(self) -> None:
        self._logs: set[str] = set()
        self._announced_calls: set[str] = set()
        self._observed: set[str] = set()
        self._tool_records: set[str] = set()
        self._errors: set[str] = set()
        self._streamed_any_token = False
        self._answer_content = ""

    def mark_token_streamed(self, token: str) -> None:
        if not token:
            return
        self._streamed_any_token = True
        self._answer_content += token

    @property
    def has_streamed_any_token(self) -> bool:
        return self._streamed_any_token

    def emit_from_state(self, state: dict[str, Any]) -> list[AgUiEvent]:
        out: list[AgUiEvent] = []
        messages = state.get("messages") or []

        for log in state.get("logs") or []:
            key = str(log)
            if key not in self._logs:
                self._logs.add(key)
                out.append(AgUiEvent(type="log", content=key))

        for msg in messages:
            if msg.get("role") == "assistant":
                for call in msg.get("tool_calls") or []:
                    if call["id"] in self._announced_calls:
                        continue
                    self._announced_calls.add(call["id"])
                    out.append(AgUiEvent(
                        type="action",
                        content=call["name"],
                        toolName=call["name"],
                        toolId=call["id"],
                        toolStatus="calling",
                        metadata={"input": call.get("arguments")},
                    ))
            elif msg.get("role") == "tool":
                call_id = msg.get("tool_call_id", "")
                if call_id in self._observed:
                    continue
                self._observed.add(call_id)
                out.append(AgUiEvent(
                    type="observation",
                    content=str(msg.get("content", "")),
                    toolName=msg.get("name"),
                    toolId=call_id,
                ))

        for record in state.get("tool_calls") or []:
            name = str(record.get("tool", ""))
            tool_id = record.get("id") or f"tool_{name}"
            status = record.get("status") or "completed"
            key = f"tool:{name}:{status}:{tool_id}"
            if key in self._tool_records:
                continue
            self._tool_records.add(key)
            out.append(AgUiEvent(
                type="action",
                content=name,
                toolName=name,
                toolId=tool_id,
                toolStatus=status,
                metadata={"input": record.get("input"), "output": record.get("output")},
            ))

        final_answer = state.get("final_answer")
        if (
            not self._streamed_any_token
            and isinstance(final_answer, str)
            and final_answer
            and final_answer != self._answer_content
        ):
            self._answer_content = final_answer
            out.append(AgUiEvent(type="answer", content=final_answer))

        if not self._streamed_any_token and messages:
            last = messages[-1]
            content = last.get("content") if last.get("role") == "assistant" else None
            if (
                isinstance(content, str)
                and content
                and content != self._answer_content
                and not last.get("tool_calls")
            ):
                self._answer_content = content
                out.append(AgUiEvent(type="answer", content=content))

        error = state.get("error")
        if isinstance(error, str) and error and error not in self._errors:
            self._errors.add(error)
            out.append(AgUiEvent(type="error", content=error))

        return out
