import os
import socket
import uuid
from typing import Optional

from loguru import logger


def default_owner_id() -> str:
    """Owner id of this process (host:pid:uuid8)."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


# Delete only if we still own the key
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockManager:
    """Single-holder Redis lease used to keep periodic jobs from overlapping.

    Acquisition is one SET NX EX; a holder that dies simply lets the lease expire.
    """

    def __init__(self, redis_client, lock_prefix: str = "streamax:lock", default_ttl: int = 60, owner: Optional[str] = None):
        self.redis_client = redis_client
        self.lock_prefix = lock_prefix
        self.default_ttl = int(default_ttl)
        self.owner = owner or default_owner_id()
        self.lock_key: Optional[str] = None
        self.acquired: bool = False

    def _make_lock_key(self, *parts) -> str:
        return f"{self.lock_prefix}:{':'.join(str(part) for part in parts)}"

    async def acquire(self, *key_parts, ttl: Optional[int] = None) -> bool:
        """
        Try once to take the lease.

        Args:
            *key_parts: Parts for composing the lock key
            ttl: Lease TTL in seconds (defaults to self.default_ttl)

        Returns:
            True if this owner now holds the lease
        """
        self.lock_key = self._make_lock_key(*key_parts)
        ttl = int(ttl or self.default_ttl)
        self.acquired = bool(await self.redis_client.set(self.lock_key, self.owner, nx=True, ex=ttl))
        if self.acquired:
            logger.debug("Acquired lock: key={} owner={} ttl={}", self.lock_key, self.owner, ttl)
        else:
            logger.info("Lock held elsewhere: key={}", self.lock_key)
        return self.acquired

    async def release(self) -> bool:
        if not self.lock_key or not self.acquired:
            return False
        try:
            res = await self.redis_client.eval(_RELEASE_LUA, 1, self.lock_key, self.owner)
        except Exception as e:
            logger.error("Error releasing lock: key={} owner={} error={}", self.lock_key, self.owner, str(e))
            return False
        self.acquired = False
        if res != 1:
            logger.warning("Lock expired before release: key={} owner={}", self.lock_key, self.owner)
            return False
        return True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.acquired:
            await self.release()
