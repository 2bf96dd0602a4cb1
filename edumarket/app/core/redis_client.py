"""
Redis connection used for settlement locks.

Redis only guards against concurrent settlement attempts; the database
constraints keep the ledger correct when it is unreachable.
"""

import redis.asyncio as redis
from edumarket.app.core.config import settings

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency. Looks the client up at call time so tests can swap it."""
    return redis_client


async def ping_redis() -> bool:
    try:
        return bool(await redis_client.ping())
    except Exception:
        return False
