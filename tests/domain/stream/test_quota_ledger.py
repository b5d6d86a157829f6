"""Tests for MongoQuotaLedger against MongoDB."""

import asyncio

import pytest

from app.domain.stream import MongoQuotaLedger
from app.schemas import UserQuota


@pytest.mark.usefixtures("clear_collections")
class TestMongoQuotaLedger:
    async def test_unknown_user_gets_default(self, beanie_db):
        ledger = MongoQuotaLedger(default_allowed=2)

        quota = await ledger.get("u.new")

        assert quota.allowed == 2
        assert quota.active == 0

    async def test_reserve_until_allowed(self, beanie_db):
        """Reservations succeed until `active` reaches `allowed`."""
        # Arrange
        ledger = MongoQuotaLedger()
        await ledger.set_allowed("u.test", 2)

        # Act
        results = [await ledger.try_reserve("u.test") for _ in range(3)]

        # Assert
        assert results == [True, True, False]
        saved = await UserQuota.find_one(UserQuota.user_id == "u.test")
        assert saved is not None
        assert saved.active == 2

    async def test_reserve_without_quota_creates_empty_entry(self, beanie_db):
        ledger = MongoQuotaLedger()

        assert await ledger.try_reserve("u.none") is False

        saved = await UserQuota.find_one(UserQuota.user_id == "u.none")
        assert saved is not None
        assert saved.allowed == 0
        assert saved.active == 0

    async def test_release_floors_at_zero(self, beanie_db):
        ledger = MongoQuotaLedger()
        await ledger.set_allowed("u.test", 1)
        await ledger.try_reserve("u.test")

        await ledger.release("u.test")
        await ledger.release("u.test")

        quota = await ledger.get("u.test")
        assert quota.active == 0

    async def test_concurrent_reserves_are_linearizable(self, beanie_db):
        """Parallel reservations never push `active` past `allowed`."""
        ledger = MongoQuotaLedger()
        await ledger.set_allowed("u.race", 3)

        results = await asyncio.gather(*(ledger.try_reserve("u.race") for _ in range(10)))

        assert results.count(True) == 3
        assert (await ledger.get("u.race")).active == 3

    async def test_set_allowed_keeps_active(self, beanie_db):
        ledger = MongoQuotaLedger()
        await ledger.set_allowed("u.test", 2)
        await ledger.try_reserve("u.test")
        await ledger.try_reserve("u.test")

        quota = await ledger.set_allowed("u.test", 1)

        assert quota.allowed == 1
        assert quota.active == 2
        assert await ledger.try_reserve("u.test") is False
