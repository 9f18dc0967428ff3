"""Redis async client used for cross-process coordination (sweep lock)."""

import redis.asyncio as aioredis

from travel_cost_engine.config import Settings


def build_redis(settings: Settings) -> aioredis.Redis:
    """Return a Redis client with its own connection pool.

    Built once per process by the app lifespan and closed on shutdown.
    """
    return aioredis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=5,
    )
