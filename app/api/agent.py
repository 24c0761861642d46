# =============================================================================
# Agent API — Configs, Blocking Chat and NDJSON Streaming Chat
# =============================================================================
#
# FLOW (POST /agent/chat/stream):
#   1. Validate ChatRequest, check the "agent" scope, resolve the tenant
#   2. AgentService routes the message to a tab sub-agent
#   3. Events are written as NDJSON, one AgUiEvent per line, ending in done
#
# DESIGN DECISION: Keep-alive pings.
# A sub-agent can spend well over a minute inside LLM and tool calls with
# nothing to say. Proxies drop idle connections, so after every
# STREAM_PING_INTERVAL_SECONDS of silence a {"type":"ping"} line goes out.
# The stream also opens with a bare "\n" so buffering proxies flush headers.
#
# DESIGN DECISION: Blocking chat persists an AgentRun in the background.
# The row is written after the response is sent, with its own session.
# =============================================================================

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.agents.configs import get_agent_config
from app.agents.service import AgentService, get_agent_service
from app.agents.streaming import AgUiEvent
from app.api.deps import check_scope, get_current_api_key, tenant_slug_for
from app.config import settings
from app.db.engine import async_session_factory
from app.db.models import AgentRun, ApiKey
from app.models.requests import ChatRequest
from app.models.responses import AgentConfigResponse, ChatResponse, ToolCallInfo
from app.services.auth import SCOPE_AGENT

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Agent"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


def _history(request: ChatRequest) -> list[dict[str, Any]]:
    return [m.model_dump() for m in request.history or []]


def _user_id(api_key: ApiKey | None) -> str:
    return f"key:{api_key.id}" if api_key is not None else "anonymous"


# ---------------------------------------------------------------------------
# GET /agent/configs
# ---------------------------------------------------------------------------


@router.get(
    "/agent/configs",
    response_model=list[AgentConfigResponse],
    summary="List available agents",
)
async def list_agent_configs(
    service: AgentService = Depends(get_agent_service),
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> list[AgentConfigResponse]:
    check_scope(api_key, SCOPE_AGENT)
    return [AgentConfigResponse(**c.public_config()) for c in service.list_agents()]


# ---------------------------------------------------------------------------
# POST /agent/chat
# ---------------------------------------------------------------------------


@router.post(
    "/agent/chat",
    response_model=ChatResponse,
    summary="Ask an agent and wait for the full answer",
)
async def chat(
    http_request: Request,
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    service: AgentService = Depends(get_agent_service),
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> ChatResponse:
    check_scope(api_key, SCOPE_AGENT)

    if get_agent_config(request.agent_key) is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent: {request.agent_key}")

    http_request.state.audit_agent_key = request.agent_key
    http_request.state.audit_question = request.message

    logger.info("Chat request: agent=%s, message='%s'", request.agent_key, request.message[:80])

    start_time = time.monotonic()
    try:
        result = await service.chat(
            agent_key=request.agent_key,
            message=request.message,
            user_id=_user_id(api_key),
            history=_history(request),
            tenant_slug=tenant_slug_for(api_key),
        )
    except ValueError as e:
        # Missing data directory or configuration error
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Agent chat failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Agent service error: {e}",
        ) from e
    latency_ms = int((time.monotonic() - start_time) * 1000)

    background_tasks.add_task(
        _persist_run,
        tenant_id=api_key.tenant_id if api_key else None,
        api_key_id=api_key.id if api_key else None,
        agent_key=request.agent_key,
        message=request.message,
        result=result,
        latency_ms=latency_ms,
    )

    return ChatResponse(
        answer=result["answer"],
        toolCalls=[ToolCallInfo(**tc) for tc in result["toolCalls"]],
    )


# ---------------------------------------------------------------------------
# POST /agent/chat/stream
# ---------------------------------------------------------------------------


@router.post(
    "/agent/chat/stream",
    summary="Ask an agent and stream AG-UI events as NDJSON",
    response_class=StreamingResponse,
)
async def chat_stream(
    http_request: Request,
    request: ChatRequest,
    service: AgentService = Depends(get_agent_service),
    api_key: ApiKey | None = Depends(get_current_api_key),
) -> StreamingResponse:
    check_scope(api_key, SCOPE_AGENT)

    http_request.state.audit_agent_key = request.agent_key
    http_request.state.audit_question = request.message

    events = service.chat_stream(
        agent_key=request.agent_key,
        message=request.message,
        user_id=_user_id(api_key),
        history=_history(request),
        tenant_slug=tenant_slug_for(api_key),
    )
    return StreamingResponse(
        ndjson_stream(http_request, events, settings.stream_ping_interval_seconds),
        media_type="application/x-ndjson",
        headers=STREAM_HEADERS,
    )


async def ndjson_stream(
    request: Request,
    events: AsyncIterator[AgUiEvent],
    ping_interval: float,
) -> AsyncIterator[str]:
    """
    Serialise events as NDJSON lines with keep-alive pings.

    Stops early when the client disconnects; the event source is closed
    either way.
    """
    yield "\n"
    iterator = events.__aiter__()
    pending: asyncio.Future | None = None
    try:
        while True:
            if await request.is_disconnected():
                logger.info("Client disconnected, stopping agent stream")
                break
            if pending is None:
                pending = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=ping_interval)
            if not done:
                yield AgUiEvent(type="ping").to_ndjson()
                continue
            try:
                event = pending.result()
            except StopAsyncIteration:
                pending = None
                break
            pending = None
            yield event.to_ndjson()
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await pending
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


# ---------------------------------------------------------------------------
# Background Run Persistence
# ---------------------------------------------------------------------------


async def _persist_run(
    tenant_id: int | None,
    api_key_id: int | None,
    agent_key: str,
    message: str,
    result: dict[str, Any],
    latency_ms: int,
) -> None:
    """Write one AgentRun row with its own session. Failures are only logged."""
    try:
        async with async_session_factory() as session:
            session.add(AgentRun(
                tenant_id=tenant_id,
                api_key_id=api_key_id,
                agent_key=agent_key,
                route=result.get("route"),
                message=message,
                answer=result.get("answer"),
                tool_calls=result.get("toolCalls"),
                latency_ms=latency_ms,
                status="error" if result.get("error") else "completed",
                error=result.get("error"),
            ))
            await session.commit()
    except Exception as e:
        logger.warning("Failed to persist agent run: %s", e)
