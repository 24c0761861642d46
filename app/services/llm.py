# =============================================================================
# Multi-Provider LLM Abstraction — Tool-Calling Chat Completions
# =============================================================================
#
# Provides a common interface for chat completions with tool calling, with
# concrete implementations for OpenAI-compatible APIs, Azure OpenAI and
# Anthropic (Claude).
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right `complete()` method works, which is also what the
# tests rely on: a fake provider is a plain class with an async complete().
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# The agent graph only needs "messages + tool schemas in, text + tool calls
# out". Using the anthropic and openai SDKs directly keeps that contract
# small and explicit, and LangGraph does not require LangChain chat models.
#
# DESIGN DECISION: Provider-neutral message dicts.
# The agent state stores messages in one shape:
#   {"role": "user" | "assistant", "content": str}
#   {"role": "assistant", "content": str, "tool_calls": [{id, name, arguments}]}
#   {"role": "tool", "tool_call_id": str, "name": str, "content": str}
# Each provider translates to and from its own wire format. The graph never
# sees SDK objects.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── OpenAICompatibleProvider — OpenAI or any OpenAI-compatible API
#   │   └── AzureOpenAIProvider  — same wire format, Azure client
#   ├── AnthropicProvider        — tool_use / tool_result content blocks
#   └── get_llm_provider()       — Singleton factory, reads from config
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text ("" when only tools were called)
    model: str             # Model identifier (e.g., "o4-mini")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response
    tool_calls: list[ToolCall] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol defining the LLM provider interface.

    Every implementation must provide `complete()`. Checked statically by
    mypy.
    """

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Provider-neutral conversation messages (see module
                header). No "system" role, use the system param.
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI as the first message.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
            tools: Tool definitions as {"name", "description", "parameters"}
                where parameters is a JSON Schema object.

        Returns:
            LLMResponse with generated text, tool calls and usage metrics.
        """
        ...


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    """Tool arguments arrive as a JSON string on the OpenAI wire format."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model returned non-JSON tool arguments: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible (OpenAI, DeepSeek, Qwen, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that speaks the OpenAI chat completions format.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat

    KEY API DIFFERENCE: o-series reasoning models reject `max_tokens` and
    `temperature`. They take `max_completion_tokens` instead.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {
            "api_key": resolved_key,
            "timeout": settings.llm_timeout_seconds,
        }
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model or settings.openai_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    @property
    def model(self) -> str:
        return self._model

    def _is_reasoning_model(self) -> bool:
        return self._model[:2] in ("o1", "o3", "o4")

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        kwargs: dict = {
            "model": self._model,
            "messages": to_openai_messages(messages, system),
        }
        limit = max_tokens or self._max_tokens
        if self._is_reasoning_model():
            kwargs["max_completion_tokens"] = limit
        else:
            kwargs["max_tokens"] = limit
            resolved_temperature = temperature if temperature is not None else self._temperature
            if resolved_temperature is not None:
                kwargs["temperature"] = resolved_temperature
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("parameters", {"type": "object", "properties": {}}),
                    },
                }
                for t in tools
            ]

        response = await self._client.chat.completions.create(**kwargs)

        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in (message.tool_calls or [])
        ]

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        return LLMResponse(
            content=message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            tool_calls=tool_calls,
        )


def to_openai_messages(
    messages: list[dict[str, Any]], system: str | None = None
) -> list[dict[str, Any]]:
    """Neutral messages → OpenAI chat messages (system prompt first)."""
    result: list[dict[str, Any]] = []
    if system:
        result.append({"role": "system", "content": system})
    for msg in messages:
        role = msg["role"]
        if role == "tool":
            result.append({
                "role": "tool",
                "tool_call_id": msg["tool_call_id"],
                "content": msg["content"],
            })
        elif role == "assistant" and msg.get("tool_calls"):
            result.append({
                "role": "assistant",
                "content": msg.get("content") or None,
                "tool_calls": [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {
                            "name": tc["name"],
                            "arguments": json.dumps(tc.get("arguments") or {}),
                        },
                    }
                    for tc in msg["tool_calls"]
                ],
            })
        else:
            result.append({"role": role, "content": msg.get("content", "")})
    return result


# ---------------------------------------------------------------------------
# Implementation 2: Azure OpenAI
# ---------------------------------------------------------------------------


class AzureOpenAIProvider(OpenAICompatibleProvider):
    """
    Azure OpenAI deployment. Same wire format as OpenAI, different client.

    The endpoint is either https://<instance>.openai.azure.com or an explicit
    base path (AZURE_OPENAI_BASE_PATH) for proxies and sovereign clouds.
    The deployment name doubles as the model name.
    """

    def __init__(
        self,
        api_key: str | None = None,
        deployment: str | None = None,
    ) -> None:
        from openai import AsyncAzureOpenAI

        resolved_key = api_key or settings.azure_openai_api_key
        resolved_deployment = deployment or settings.azure_openai_api_deployment_name
        if not resolved_key or not resolved_deployment:
            raise ValueError(
                "Azure OpenAI needs AZURE_OPENAI_API_KEY and "
                "AZURE_OPENAI_API_DEPLOYMENT_NAME in .env"
            )

        client_kwargs: dict = {
            "api_key": resolved_key,
            "api_version": settings.azure_openai_api_version,
            "timeout": settings.llm_timeout_seconds,
        }
        if settings.azure_openai_base_path:
            endpoint = settings.azure_openai_base_path.rstrip("/")
            client_kwargs["base_url"] = f"{endpoint}/{resolved_deployment}"
        elif settings.azure_openai_api_instance_name:
            endpoint = f"https://{settings.azure_openai_api_instance_name}.openai.azure.com"
            client_kwargs["azure_endpoint"] = endpoint
            client_kwargs["azure_deployment"] = resolved_deployment
        else:
            raise ValueError(
                "Azure OpenAI needs AZURE_OPENAI_API_INSTANCE_NAME or "
                "AZURE_OPENAI_BASE_PATH in .env"
            )

        self._client = AsyncAzureOpenAI(**client_kwargs)
        self._model = resolved_deployment
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized AzureOpenAIProvider (deployment=%s, endpoint=%s, api_version=%s)",
            resolved_deployment, endpoint, settings.azure_openai_api_version,
        )


# ---------------------------------------------------------------------------
# Implementation 3: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCES:
    - System prompts are a top-level `system=` kwarg, not a message.
    - Tool calls are `tool_use` content blocks on the assistant turn, and
      results go back as `tool_result` blocks inside a *user* turn.
      Consecutive tool results must share one user turn.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(
            api_key=resolved_key, timeout=settings.llm_timeout_seconds
        )
        self._model = model or settings.llm_model or settings.anthropic_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self._model,
            "messages": to_anthropic_messages(messages),
            "max_tokens": max_tokens or self._max_tokens,
        }
        resolved_temperature = temperature if temperature is not None else self._temperature
        if resolved_temperature is not None:
            kwargs["temperature"] = resolved_temperature
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "input_schema": t.get("parameters", {"type": "object", "properties": {}}),
                }
                for t in tools
            ]

        response = await self._client.messages.create(**kwargs)

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )

        return LLMResponse(
            content="".join(texts),
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            tool_calls=tool_calls,
        )


def to_anthropic_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Neutral messages → Anthropic messages with tool_use / tool_result blocks."""
    result: list[dict[str, Any]] = []
    for msg in messages:
        role = msg["role"]
        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg["tool_call_id"],
                "content": msg["content"],
            }
            last = result[-1] if result else None
            if (
                last is not None
                and last["role"] == "user"
                and isinstance(last["content"], list)
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                result.append({"role": "user", "content": [block]})
        elif role == "assistant" and msg.get("tool_calls"):
            blocks: list[dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": msg["content"]})
            blocks.extend(
                {
                    "type": "tool_use",
                    "id": tc["id"],
                    "name": tc["name"],
                    "input": tc.get("arguments") or {},
                }
                for tc in msg["tool_calls"]
            )
            result.append({"role": "assistant", "content": blocks})
        else:
            result.append({"role": role, "content": msg.get("content", "")})
    return result


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton — avoid re-creating client on every request
_provider: LLMProvider | None = None


def _auto_provider() -> LLMProvider:
    """First configured of OpenAI → Azure OpenAI → Anthropic."""
    if settings.openai_api_key or (settings.llm_api_key and settings.llm_base_url):
        return OpenAICompatibleProvider()
    if settings.azure_openai_api_key and settings.azure_openai_api_deployment_name:
        return AzureOpenAIProvider()
    if settings.anthropic_api_key:
        return AnthropicProvider()
    raise ValueError(
        "No LLM configured. Set OPENAI_API_KEY, the AZURE_OPENAI_* settings "
        "or ANTHROPIC_API_KEY in .env"
    )


def get_llm_provider() -> LLMProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "auto" → first provider with credentials (OpenAI, Azure, Anthropic)
    - "openai_compatible" → OpenAICompatibleProvider
    - "azure_openai" → AzureOpenAIProvider
    - "anthropic" → AnthropicProvider

    Raises:
        ValueError: If the selected provider has no credentials.

    DESIGN DECISION: Lazy singleton. The SDK clients manage their own
    connection pools. Creating one per request would waste connection
    setup time.
    """
    global _provider
    if _provider is None:
        choice = settings.llm_provider
        if choice == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        elif choice == "azure_openai":
            _provider = AzureOpenAIProvider()
        elif choice == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = _auto_provider()
    return _provider


def reset_llm_provider() -> None:
    """Drop the cached provider (used after settings change and in tests)."""
    global _provider
    _provider = None
