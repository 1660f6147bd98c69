"""
Redis lease that keeps full sync runs from overlapping.
"""
import logging
import uuid
from typing import Optional

from redis.asyncio import Redis

from cardsync.core.exceptions import SyncInProgressError

logger = logging.getLogger(__name__)

LEASE_KEY = "cardsync:sync:lease"

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class SyncLease:
    """
    Single-holder lease: ``SET key token NX EX ttl``, released by its owner.

    The TTL bounds how long a crashed holder can block other runs.
    """

    def __init__(self, redis: Redis, ttl_seconds: int, key: str = LEASE_KEY):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.key = key
        self.token: Optional[str] = None

    async def acquire(self, run_id: Optional[str] = None) -> bool:
        token = run_id or uuid.uuid4().hex
        acquired = await self.redis.set(self.key, token, nx=True, ex=self.ttl_seconds)
        if acquired:
            self.token = token
            logger.info(f"Sync lease acquired by run {token}")
            return True
        return False

    async def holder(self) -> Optional[str]:
        return await self.redis.get(self.key)

    async def release(self) -> None:
        if self.token is None:
            return
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
            logger.info(f"Sync lease released by run {self.token}")
        except Exception as e:
            # The TTL reclaims the lease
            logger.error(f"Failed to release sync lease: {e}")
        finally:
            self.token = None

    async def __aenter__(self) -> "SyncLease":
        if not await self.acquire():
            raise SyncInProgressError(holder=await self.holder())
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()
