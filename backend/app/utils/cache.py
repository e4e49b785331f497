"""Redis cache for the billing dashboard rollups.

``cached`` stores a rollup's JSON under ``{prefix}:{function}:{hash}`` and
``invalidate_cache`` drops every key matching a pattern.  Event handlers
run inside the writer's transaction, so they only queue a pattern on the
session with ``invalidate_on_commit``; the commit point runs the queue
once the rows are visible to other sessions.  A Redis outage degrades to
uncached reads, never to a failed request.
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None

KEYABLE = (int, str, bool, float, type(None))


async def get_redis() -> redis.Redis:
    """Shared client, created on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def cache_key(*args, **kwargs) -> str:
    """Stable digest of the arguments; ``default`` when there are none."""
    if not (args or kwargs):
        return "default"
    payload = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True)
    return hashlib.md5(payload.encode()).hexdigest()


def _keyable_kwargs(kwargs: dict) -> dict:
    # sessions and other objects never reach the key; dates do, as ISO strings
    out = {}
    for name, value in kwargs.items():
        if name.startswith("_"):
            continue
        if isinstance(value, KEYABLE):
            out[name] = value
        elif isinstance(value, (date, datetime)):
            out[name] = value.isoformat()
    return out


def _to_json(result) -> str:
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    elif isinstance(result, list) and result and hasattr(result[0], "model_dump"):
        result = [item.model_dump(mode="json") for item in result]
    return json.dumps(result)


def cached(ttl: Optional[int] = None, prefix: str = "cache", model: Optional[type] = None):
    """Cache an async function's result in Redis.

    Args:
        ttl: seconds to keep the entry (defaults to ``settings.cache_ttl_seconds``)
        prefix: namespace used by ``invalidate_cache``
        model: pydantic model to rebuild the value with on a hit

    Positional arguments are left out of the key; pass anything that
    should vary the entry as a keyword.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            key = f"{prefix}:{func.__name__}:{cache_key(**_keyable_kwargs(kwargs))}"
            try:
                client = await get_redis()
                hit = await client.get(key)
                if hit:
                    logger.debug("Cache hit %s", key)
                    data = json.loads(hit)
                    return model.model_validate(data) if model else data

                logger.debug("Cache miss %s", key)
                result = await func(*args, **kwargs)
                await client.setex(key, ttl or settings.cache_ttl_seconds, _to_json(result))
                return result
            except redis.RedisError as exc:
                logger.warning("Redis unavailable, serving %s uncached: %s", func.__name__, exc)
                return await func(*args, **kwargs)

        return wrapper

    return decorator


async def invalidate_cache(pattern: str) -> int:
    """Delete every key matching ``pattern``; return how many went."""
    if not settings.cache_enabled:
        return 0
    try:
        client = await get_redis()
        doomed = [key async for key in client.scan_iter(match=pattern)]
        if not doomed:
            return 0
        await client.delete(*doomed)
        logger.info("Invalidated %d cache key(s) matching %s", len(doomed), pattern)
        return len(doomed)
    except redis.RedisError as exc:
        logger.warning("Cache invalidation for %s failed: %s", pattern, exc)
        return 0


PENDING_INVALIDATIONS = "pending_cache_invalidations"


def invalidate_on_commit(db: AsyncSession, pattern: str) -> None:
    """Queue ``pattern`` for deletion once ``db`` commits."""
    db.info.setdefault(PENDING_INVALIDATIONS, set()).add(pattern)


def discard_pending_invalidations(db: AsyncSession) -> None:
    db.info.pop(PENDING_INVALIDATIONS, None)


async def run_pending_invalidations(db: AsyncSession) -> int:
    """Invalidate what the committed transaction queued; call after ``commit()``."""
    dropped = 0
    for pattern in sorted(db.info.pop(PENDING_INVALIDATIONS, ())):
        dropped += await invalidate_cache(pattern)
    return dropped
