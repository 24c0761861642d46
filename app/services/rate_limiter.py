# =============================================================================
# Rate Limiter — Redis Sliding Window per API Key
# =============================================================================
#
# One sorted set per key: every request adds a member scored by its
# timestamp, members older than the window are pruned, and the remaining
# count is compared against the key's limit.
#
# DESIGN DECISION: Graceful degradation. If Redis is unavailable the
# request is allowed and a warning logged; a Redis outage must not take
# the analytics API down with it.
#
# Uses its own Redis URL (RATE_LIMIT_REDIS_URL, db 3 by default).
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid

import redis.asyncio as aioredis
from fastapi import HTTPException

from app.config import settings
from app.db.models import ApiKey

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

_redis_client: aioredis.Redis | None = None


def _get_rate_limit_redis() -> aioredis.Redis:
    """Lazily create and cache the async Redis client for rate limiting."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.rate_limit_redis_url,
            decode_responses=True,
        )
    return _redis_client


def rate_limit_for(api_key: ApiKey) -> int:
    return api_key.rate_limit_rpm or settings.rate_limit_rpm


async def check_rate_limit(api_key: ApiKey | None) -> None:
    """
    Count this request against the key's per-minute budget.

    Raises:
        HTTPException 429: Over the limit (with a Retry-After header).

    No-op when auth is disabled (api_key is None) or Redis is down.
    """
    if api_key is None:
        return

    limit = rate_limit_for(api_key)
    redis_key = f"ratelimit:tenant:{api_key.tenant_id}:key:{api_key.id}"

    try:
        r = _get_rate_limit_redis()
        now = time.time()

        pipe = r.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - WINDOW_SECONDS)
        pipe.zcard(redis_key)
        # Unique member so two requests in the same microsecond both count
        pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.expire(redis_key, WINDOW_SECONDS + 10)
        results = await pipe.execute()
        current_count = results[1]
    except Exception as e:
        logger.warning(
            "Rate limiter unavailable (Redis error): %s. Allowing request through.", e,
        )
        return

    if current_count >= limit:
        logger.info("Rate limit hit: key prefix=%s, limit=%d/min", api_key.key_prefix, limit)
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Limit: {limit} requests/minute.",
            headers={"Retry-After": str(WINDOW_SECONDS)},
        )
