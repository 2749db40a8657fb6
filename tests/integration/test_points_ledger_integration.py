from __future__ import annotations

import asyncio

from myrad.db.models import Referral
from myrad.db.repo.referrals_repo import ReferralsRepo
from myrad.points.service import PointsService
from myrad.referrals.service import ReferralService
from myrad.users.service import UserService


async def _create_user(store, store_settings, external_id: str) -> int:
    result = await UserService.reconcile_identity(
        store,
        external_id=external_id,
        settings=store_settings,
    )
    return result.user.id


async def test_concurrent_awards_keep_total_equal_to_ledger_sum(store, store_settings) -> None:
    user_id = await _create_user(store, store_settings, "did:ledger:1")

    await asyncio.gather(
        *(
            PointsService.award_points(
                store,
                user_id=user_id,
                points=25,
                reason="data_contribution",
                settings=store_settings,
            )
            for _ in range(20)
        )
    )

    total = await PointsService.get_total_points(store, user_id=user_id)
    history = await PointsService.get_points_history(store, user_id=user_id, limit=100)
    assert total == store_settings.baseline_points + 500
    assert sum(item.points for item in history) == total
    assert len(history) == 21
    assert await PointsService.audit_ledger_consistency(store) == []


async def test_league_follows_running_total(store, store_settings) -> None:
    user_id = await _create_user(store, store_settings, "did:ledger:2")

    award = await PointsService.award_points(
        store,
        user_id=user_id,
        points=1_490,
        reason="data_contribution",
        settings=store_settings,
    )

    assert award.total_points == 1_500
    assert award.league == "Gold"


async def test_referee_crossing_threshold_counts_for_referrer(store, store_settings) -> None:
    referrer_id = await _create_user(store, store_settings, "did:ledger:referrer")
    referee_id = await _create_user(store, store_settings, "did:ledger:referee")
    async with store.transaction() as session:
        await ReferralsRepo.create_if_absent(
            session,
            user_id=referrer_id,
            referral_code="ABCD2345",
            wallet_address=None,
        )
    await ReferralService.apply_referral_code(store, user_id=referee_id, referral_code="ABCD2345")

    below = await PointsService.award_points(
        store,
        user_id=referee_id,
        points=40,
        reason="data_contribution",
        settings=store_settings,
    )
    crossing = await PointsService.award_points(
        store,
        user_id=referee_id,
        points=40,
        reason="data_contribution",
        settings=store_settings,
    )
    after = await PointsService.award_points(
        store,
        user_id=referee_id,
        points=40,
        reason="data_contribution",
        settings=store_settings,
    )

    assert below.referral_threshold_crossed is False
    assert crossing.referral_threshold_crossed is True
    assert after.referral_threshold_crossed is False
    async with store.transaction() as session:
        referral = await session.get(Referral, referrer_id)
    assert referral.successful_ref == 1
