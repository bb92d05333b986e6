from __future__ import annotations
import logging
import time
import redis.asyncio as redis
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_client: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(_settings.redis_url, decode_responses=True, socket_connect_timeout=2)
    return _client

async def ping_redis() -> bool:
    try:
        return bool(await get_redis().ping())
    except redis.RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False

async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

# ---- Scan throttling: fixed window per client IP and route ----
async def allow_request(ip: str, route_key: str) -> bool:
    """
    Count hits in the current window bucket; allow while the count stays within RL_MAX_REQS.
    Fails open when Redis is unreachable.
    """
    if not _settings.rl_enabled:
        return True
    window = _settings.rl_window_seconds
    key = f"rl:{route_key}:{ip}:{int(time.time()) // window}"
    try:
        async with get_redis().pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window)
            count, _ = await pipe.execute()
    except redis.RedisError as e:
        logger.warning(f"Rate limit check skipped for {route_key}: {e}")
        return True
    return int(count) <= _settings.rl_max_reqs
