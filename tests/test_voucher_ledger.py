"""
Tests for the usage ledger: atomic conditional increments, auto-expiry,
per-user sub-ledger and idempotent replays under concurrent redemptions.
"""

import asyncio

import pytest

from shop_backend.database.db_types import VoucherStatus
from shop_backend.utils import voucher_service
from shop_backend.utils.errors import VoucherIneligible, VoucherNotFound


async def _redeem(voucher_id: int, **kwargs):
    try:
        return await voucher_service.commit_redemption(voucher_id, **kwargs)
    except VoucherIneligible as e:
        return e


class TestCommitRedemption:

    @pytest.mark.asyncio
    async def test_increments_usage(self, database, create_voucher):
        voucher = await create_voucher()

        outcome = await voucher_service.commit_redemption(voucher.id)

        assert outcome.usage_count == 1
        assert outcome.expired is False
        assert outcome.replayed is False

        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 1
        assert stored.last_used_timestamp is not None
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_unlimited_voucher_keeps_counting(self, database, create_voucher):
        voucher = await create_voucher()
        for _ in range(5):
            await voucher_service.commit_redemption(voucher.id)

        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 5
        assert stored.status == VoucherStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_reaching_limit_expires_voucher(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=2)

        first = await voucher_service.commit_redemption(voucher.id)
        second = await voucher_service.commit_redemption(voucher.id)

        assert first.expired is False
        assert second.expired is True

        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 2
        assert stored.status == VoucherStatus.EXPIRED
        assert stored.is_active is False

    @pytest.mark.asyncio
    async def test_exhausted_voucher_rejected(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=1)
        await voucher_service.commit_redemption(voucher.id)

        with pytest.raises(VoucherIneligible) as exc_info:
            await voucher_service.commit_redemption(voucher.id)

        assert exc_info.value.reason == "usage_exhausted"
        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 1

    @pytest.mark.asyncio
    async def test_missing_voucher(self, database):
        with pytest.raises(VoucherNotFound):
            await voucher_service.commit_redemption(999)

    @pytest.mark.asyncio
    async def test_concurrent_commits_never_exceed_limit(self, database, create_voucher):
        limit, attempts = 3, 10
        voucher = await create_voucher(usage_limit=limit)

        results = await asyncio.gather(
            *[_redeem(voucher.id, user_id=f"user-{i}") for i in range(attempts)]
        )

        successes = [r for r in results if not isinstance(r, VoucherIneligible)]
        rejections = [r for r in results if isinstance(r, VoucherIneligible)]
        assert len(successes) == limit
        assert len(rejections) == attempts - limit
        assert {r.reason for r in rejections} == {"usage_exhausted"}

        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == limit
        assert stored.status == VoucherStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_single_use_voucher_race(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=1)

        results = await asyncio.gather(_redeem(voucher.id), _redeem(voucher.id))

        assert sum(not isinstance(r, VoucherIneligible) for r in results) == 1
        found = await voucher_service.find_voucher(voucher.id)
        assert found.status == VoucherStatus.EXPIRED
        assert found.usage_count == 1


class TestPerUserLedger:

    @pytest.mark.asyncio
    async def test_creates_and_increments_user_entry(self, database, create_voucher):
        voucher = await create_voucher(per_user_limit=3)

        await voucher_service.commit_redemption(voucher.id, user_id="alice")
        await voucher_service.commit_redemption(voucher.id, user_id="alice")
        await voucher_service.commit_redemption(voucher.id, user_id="bob")

        assert (await database.voucher_usage.get_usage(voucher.id, "alice")).count == 2
        assert (await database.voucher_usage.get_usage(voucher.id, "bob")).count == 1
        usages = await database.voucher_usage.get_voucher_usages(voucher.id)
        assert [u.user_id for u in usages] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_user_entries_skipped_without_per_user_limit(self, database, create_voucher):
        voucher = await create_voucher()

        await voucher_service.commit_redemption(voucher.id, user_id="alice")

        assert await database.voucher_usage.get_usage(voucher.id, "alice") is None

    @pytest.mark.asyncio
    async def test_per_user_limit_rolls_back_global_counter(self, database, create_voucher):
        voucher = await create_voucher(per_user_limit=1, usage_limit=10)
        await voucher_service.commit_redemption(voucher.id, user_id="alice")

        with pytest.raises(VoucherIneligible) as exc_info:
            await voucher_service.commit_redemption(voucher.id, user_id="alice")

        assert exc_info.value.reason == "per_user_limit"
        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 1
        assert (await database.voucher_usage.get_usage(voucher.id, "alice")).count == 1

    @pytest.mark.asyncio
    async def test_concurrent_same_user(self, database, create_voucher):
        voucher = await create_voucher(per_user_limit=2)

        results = await asyncio.gather(*[_redeem(voucher.id, user_id="alice") for _ in range(6)])

        assert sum(not isinstance(r, VoucherIneligible) for r in results) == 2
        assert (await database.voucher_usage.get_usage(voucher.id, "alice")).count == 2
        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 2


class TestIdempotentRedemption:

    @pytest.mark.asyncio
    async def test_replay_does_not_double_count(self, database, create_voucher):
        voucher = await create_voucher(per_user_limit=5)

        first = await voucher_service.commit_redemption(
            voucher.id, user_id="alice", idempotency_key="order-1"
        )
        second = await voucher_service.commit_redemption(
            voucher.id, user_id="alice", idempotency_key="order-1"
        )

        assert first.replayed is False
        assert second.replayed is True
        assert second.usage_count == 1
        assert (await database.voucher_usage.get_usage(voucher.id, "alice")).count == 1

        redemption = await database.voucher_redemption.get_redemption("order-1")
        assert redemption.voucher_id == voucher.id
        assert redemption.user_id == "alice"

    @pytest.mark.asyncio
    async def test_replay_after_exhaustion(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=1)
        await voucher_service.commit_redemption(voucher.id, idempotency_key="order-7")

        outcome = await voucher_service.commit_redemption(voucher.id, idempotency_key="order-7")

        assert outcome.replayed is True
        assert outcome.usage_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_replays_count_once(self, database, create_voucher):
        voucher = await create_voucher()

        outcomes = await asyncio.gather(
            *[
                voucher_service.commit_redemption(voucher.id, idempotency_key="order-9")
                for _ in range(5)
            ]
        )

        assert sum(not o.replayed for o in outcomes) == 1
        stored = await database.voucher.get_voucher(voucher.id)
        assert stored.usage_count == 1

    @pytest.mark.asyncio
    async def test_rejected_commit_leaves_no_log_entry(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=1, usage_count=1)

        with pytest.raises(VoucherIneligible):
            await voucher_service.commit_redemption(voucher.id, idempotency_key="order-3")

        assert await database.voucher_redemption.get_redemption("order-3") is None

    @pytest.mark.asyncio
    async def test_key_reused_on_other_voucher_reports_original(self, database, create_voucher):
        first = await create_voucher(code="FIRST")
        second = await create_voucher(code="SECOND")
        await voucher_service.commit_redemption(first.id, idempotency_key="order-11")

        outcome = await voucher_service.commit_redemption(second.id, idempotency_key="order-11")

        assert outcome.replayed is True
        assert outcome.voucher_id == first.id
        assert outcome.usage_count == 1
        untouched = await database.voucher.get_voucher(second.id)
        assert untouched.usage_count == 0

    @pytest.mark.asyncio
    async def test_replay_reports_exhaustion(self, database, create_voucher):
        voucher = await create_voucher(usage_limit=1)
        first = await voucher_service.commit_redemption(voucher.id, idempotency_key="order-12")

        replay = await voucher_service.commit_redemption(voucher.id, idempotency_key="order-12")

        assert first.expired is True
        assert replay.replayed is True
        assert replay.expired is True
