"""
Settlement locks.

A short Redis lock per transaction id keeps two workers from calling the
payment verifier for the same payment at once. Correctness does not depend
on it: every ledger and balance write is a conditional update, so if Redis
is down the lock fails open and the database guards decide.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from edumarket.app.core.config import settings
from edumarket.app.core.exceptions import SettlementInProgressError
from edumarket.app.core.redis_client import get_redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "settlement:lock:"

# Delete only if the key still holds our token, in one round trip
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _lock_key(key: str) -> str:
    return f"{LOCK_PREFIX}{key}"


async def acquire_settlement_lock(key: str, token: str, ttl_s: int) -> bool:
    try:
        client = await get_redis()
        acquired = await client.set(_lock_key(key), token, ex=ttl_s, nx=True)
    except Exception as exc:
        logger.warning(
            "settlement_lock_acquire_failed",
            extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True
    return bool(acquired)


async def release_settlement_lock(key: str, token: str) -> None:
    try:
        client = await get_redis()
        await client.eval(RELEASE_SCRIPT, 1, _lock_key(key), token)
    except Exception as exc:
        logger.warning(
            "settlement_lock_release_failed",
            extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@asynccontextmanager
async def settlement_lock(key: str, ttl_s: int = None) -> AsyncIterator[None]:
    """
    Hold the settlement lock for `key` for the duration of the block.

    Raises:
        SettlementInProgressError: another worker holds the lock
    """
    token = uuid.uuid4().hex
    ttl = ttl_s or settings.settlement_lock_ttl_seconds
    if not await acquire_settlement_lock(key, token, ttl):
        raise SettlementInProgressError(key)
    try:
        yield
    finally:
        await release_settlement_lock(key, token)
