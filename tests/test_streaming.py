# =============================================================================
# Unit Tests — AG-UI Events and the Dedupe Emitter
# =============================================================================

from __future__ import annotations

import json

from app.agents.streaming import AgUiDedupeEmitter, AgUiEvent


def _tool_round_state() -> dict:
    return {
        "messages": [
            {"role": "user", "content": "q"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "c1", "name": "get_arr_trend", "arguments": {"year": ["2026"]}}],
            },
            {"role": "tool", "tool_call_id": "c1", "name": "get_arr_trend", "content": "{}"},
        ],
        "logs": ["Iteration 1/10: 1 tool call(s)"],
        "tool_calls": [
            {"tool": "get_arr_trend", "input": {"year": ["2026"]}, "output": "{}",
             "id": "c1", "status": "completed"},
        ],
    }


class TestAgUiEvent:
    def test_ndjson_omits_none(self):
        line = AgUiEvent(type="answer", content="hi").to_ndjson()
        assert line.endswith("\n")
        assert json.loads(line) == {"type": "answer", "content": "hi"}

    def test_camel_case_tool_fields(self):
        event = AgUiEvent(type="action", content="x", toolName="x", toolStatus="calling")
        assert json.loads(event.to_ndjson())["toolStatus"] == "calling"


class TestDedupeEmitter:
    def test_tool_round(self):
        events = AgUiDedupeEmitter().emit_from_state(_tool_round_state())
        assert [(e.type, e.toolStatus) for e in events] == [
            ("log", None),
            ("action", "calling"),
            ("observation", None),
            ("action", "completed"),
        ]
        assert events[1].metadata == {"input": {"year": ["2026"]}}
        assert events[3].metadata["output"] == "{}"

    def test_same_snapshot_twice_emits_nothing(self):
        emitter = AgUiDedupeEmitter()
        state = _tool_round_state()
        emitter.emit_from_state(state)
        assert emitter.emit_from_state(state) == []

    def test_only_new_items_emitted(self):
        emitter = AgUiDedupeEmitter()
        state = _tool_round_state()
        emitter.emit_from_state(state)

        state["messages"].append({"role": "assistant", "content": "ARR is up"})
        state["logs"].append("Iteration 2/10: final answer")
        state["final_answer"] = "ARR is up"
        events = emitter.emit_from_state(state)
        assert [(e.type, e.content) for e in events] == [
            ("log", "Iteration 2/10: final answer"),
            ("answer", "ARR is up"),
        ]

    def test_assistant_text_without_final_answer(self):
        events = AgUiDedupeEmitter().emit_from_state(
            {"messages": [{"role": "assistant", "content": "partial"}]}
        )
        assert [(e.type, e.content) for e in events] == [("answer", "partial")]

    def test_error_emitted_once(self):
        emitter = AgUiDedupeEmitter()
        first = emitter.emit_from_state({"error": "stopped"})
        second = emitter.emit_from_state({"error": "stopped"})
        assert [e.type for e in first] == ["error"]
        assert second == []

    def test_streamed_tokens_suppress_answer(self):
        emitter = AgUiDedupeEmitter()
        emitter.mark_token_streamed("ARR ")
        emitter.mark_token_streamed("")
        assert emitter.has_streamed_any_token
        events = emitter.emit_from_state({"final_answer": "ARR is up", "messages": []})
        assert events == []
