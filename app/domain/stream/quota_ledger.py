"""Per-user concurrent stream quota with atomic reserve/release."""

from typing import Protocol

from beanie.odm.operators.update.general import Inc, Set
from loguru import logger
from pymongo.errors import DuplicateKeyError

from app.domain.utils.timeutil import utc_now
from app.schemas import UserQuota

from .stream_models import QuotaInfo


class QuotaLedger(Protocol):
    async def try_reserve(self, user_id: str) -> bool: ...

    async def release(self, user_id: str) -> None: ...

    async def set_allowed(self, user_id: str, allowed: int) -> QuotaInfo: ...

    async def get(self, user_id: str) -> QuotaInfo: ...


class MongoQuotaLedger:
    """Quota ledger on the `user_quota` collection.

    Reserve and release are single conditional updates on the user's document,
    so concurrent calls for one user are linearizable and `active` stays within
    `[0, allowed]`.
    """

    def __init__(self, default_allowed: int = 0):
        self.default_allowed = default_allowed

    async def _ensure_entry(self, user_id: str) -> None:
        try:
            await UserQuota.get_pymongo_collection().update_one(
                {"user_id": user_id},
                {
                    "$setOnInsert": {
                        "user_id": user_id,
                        "allowed": self.default_allowed,
                        "active": 0,
                        "updated_at": utc_now(),
                    }
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # Inserted concurrently
            pass

    async def try_reserve(self, user_id: str) -> bool:
        """Increment `active` if it is below `allowed`. No side effect otherwise."""
        await self._ensure_entry(user_id)

        result = await UserQuota.find(
            UserQuota.user_id == user_id,
            {"$expr": {"$lt": ["$active", "$allowed"]}},
        ).update(Inc({UserQuota.active: 1}), Set({UserQuota.updated_at: utc_now()}))

        reserved = bool(result and result.modified_count > 0)
        if reserved:
            logger.info(f"Reserved stream quota for user {user_id}")
        else:
            logger.info(f"Stream quota exhausted for user {user_id}")
        return reserved

    async def release(self, user_id: str) -> None:
        """Decrement `active`, floored at 0."""
        result = await UserQuota.find(
            UserQuota.user_id == user_id,
            UserQuota.active > 0,
        ).update(Inc({UserQuota.active: -1}), Set({UserQuota.updated_at: utc_now()}))

        if not result or result.modified_count == 0:
            logger.warning(f"Quota release for user {user_id} found no active reservation")
            return
        logger.info(f"Released stream quota for user {user_id}")

    async def set_allowed(self, user_id: str, allowed: int) -> QuotaInfo:
        """Update the ceiling. `active` is left untouched."""
        try:
            await UserQuota.get_pymongo_collection().update_one(
                {"user_id": user_id},
                {
                    "$set": {"allowed": allowed, "updated_at": utc_now()},
                    "$setOnInsert": {"user_id": user_id, "active": 0},
                },
                upsert=True,
            )
        except DuplicateKeyError:
            await UserQuota.find(UserQuota.user_id == user_id).update(
                Set({UserQuota.allowed: allowed, UserQuota.updated_at: utc_now()})
            )
        logger.info(f"Set stream quota for user {user_id}: allowed={allowed}")
        return await self.get(user_id)

    async def get(self, user_id: str) -> QuotaInfo:
        quota = await UserQuota.find_one(UserQuota.user_id == user_id)
        if quota is None:
            return QuotaInfo(user_id=user_id, allowed=self.default_allowed, active=0)
        return QuotaInfo(user_id=quota.user_id, allowed=quota.allowed, active=quota.active)
