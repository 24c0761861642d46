# =============================================================================
# Agent Tools — Definition and Invocation
# =============================================================================
#
# A tool is a name, a description the LLM reads, a pydantic model for its
# arguments, and a function that returns JSON-able data. The same pydantic
# filter models back the REST endpoints, so a tool and its endpoint can
# never disagree on what a filter means.
#
# DESIGN DECISION: Tools return JSON strings.
# That is what goes into the tool message the model reads. List-shaped
# results are truncated (see truncated_list) so one call cannot blow the
# context window.
# =============================================================================

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.config import settings


@dataclass
class AgentTool:
    """One LLM-callable tool."""

    name: str
    description: str
    args_model: type[BaseModel]
    func: Callable[[Any], Any]

    def schema(self) -> dict[str, Any]:
        """Provider-neutral definition: {name, description, parameters}."""
        parameters = self.args_model.model_json_schema(by_alias=True)
        parameters.pop("title", None)
        return {
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }

    def invoke(self, arguments: dict[str, Any] | None) -> str:
        """
        Validate arguments, run the tool and serialise the result.

        Raises:
            pydantic.ValidationError: If the arguments do not fit args_model.
            Exception: Whatever the underlying computation raises.
        """
        args = self.args_model.model_validate(arguments or {})
        result = self.func(args)
        return result if isinstance(result, str) else json.dumps(result, default=str)


def truncated_list(items: list[Any], max_items: int | None = None) -> dict[str, Any]:
    """{data, truncated, total}: at most max_items (default tool_max_items) rows."""
    limit = max_items or settings.tool_max_items
    return {
        "data": items[:limit],
        "truncated": len(items) > limit,
        "total": len(items),
    }


def tools_by_name(tools: list[AgentTool]) -> dict[str, AgentTool]:
    return {t.name: t for t in tools}
