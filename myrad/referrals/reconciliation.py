from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.core.config import Settings, get_settings
from myrad.core.referral_codes import generate_referral_code
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.referrals_repo import ReferralsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.retry import RetryPolicy, run_with_retry
from myrad.db.session import Store
from myrad.points.service import award_points_in_session
from myrad.points.types import REFERRAL_SUCCESS_BONUS_REASON

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def provision_referral_codes(
    session: AsyncSession,
    *,
    min_points: int,
    code_length: int,
    batch_size: int,
) -> dict[str, int]:
    candidates = await ReferralsRepo.list_users_missing_referral(
        session,
        min_points=min_points,
        limit=batch_size,
    )
    created = 0
    for user_id, wallet_address in candidates:
        inserted = await ReferralsRepo.create_if_absent(
            session,
            user_id=user_id,
            referral_code=generate_referral_code(code_length),
            wallet_address=wallet_address,
        )
        if inserted:
            created += 1
    # Skipped rows (concurrent provisioning or a code collision) are picked up next cycle.
    return {
        "provision_candidates": len(candidates),
        "referrals_created": created,
        "provision_skipped": len(candidates) - created,
    }


async def sync_wallets(session: AsyncSession) -> dict[str, int]:
    return {"wallets_synced": await ReferralsRepo.sync_wallet_addresses(session)}


async def recompute_success_counts(
    session: AsyncSession,
    *,
    min_referee_points: int,
) -> dict[str, int]:
    updated = await ReferralsRepo.recompute_success_counts(
        session,
        min_referee_points=min_referee_points,
    )
    return {"success_counts_updated": updated}


async def top_up_referrer_in_session(
    session: AsyncSession,
    *,
    user_id: int,
    points_per_referral: int,
    referral_crossing_points: int,
    now_utc: datetime,
) -> int:
    """Awards the gap between earned and paid referral bonuses; returns the points paid.

    The awarded sum is read only after the referrer row is locked, so two
    overlapping runs serialize here and the second one sees a zero gap.
    """
    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        return 0
    referral = await ReferralsRepo.get_by_user_id(session, user_id)
    if referral is None or referral.successful_ref <= 0:
        return 0

    expected = int(referral.successful_ref) * points_per_referral
    awarded = await PointsRepo.sum_for_user(
        session,
        user_id=user_id,
        reason=REFERRAL_SUCCESS_BONUS_REASON,
    )
    shortfall = expected - awarded
    if shortfall <= 0:
        return 0

    await award_points_in_session(
        session,
        user_id=user_id,
        points=shortfall,
        reason=REFERRAL_SUCCESS_BONUS_REASON,
        now_utc=now_utc,
        referral_crossing_points=referral_crossing_points,
    )
    return shortfall


async def _run_step(
    store: Store,
    *,
    step: str,
    body: Callable[[AsyncSession], Awaitable[T]],
    policy: RetryPolicy,
) -> T | None:
    async def _attempt() -> T:
        async with store.transaction() as session:
            return await body(session)

    try:
        return await run_with_retry(
            _attempt,
            operation_name=f"referral_reconciliation.{step}",
            policy=policy,
        )
    except Exception:
        logger.exception("referral_reconciliation_step_failed", step=step)
        return None


async def run_referral_reconciliation(
    store: Store,
    *,
    settings: Settings | None = None,
) -> dict[str, int]:
    """One level-triggered pass: provision codes, sync wallets, recount, top up.

    Every step commits on its own. A failed step is logged and counted while
    the others still run, and the next pass converges from whatever state is
    left behind.
    """
    resolved_settings = settings or get_settings()
    policy = RetryPolicy.from_settings(resolved_settings)
    batch_size = resolved_settings.referral_reconcile_batch_size

    result = {
        "provision_candidates": 0,
        "referrals_created": 0,
        "provision_skipped": 0,
        "wallets_synced": 0,
        "success_counts_updated": 0,
        "topup_candidates": 0,
        "topup_awarded": 0,
        "topup_points": 0,
        "topup_failed": 0,
        "steps_failed": 0,
    }

    steps: tuple[tuple[str, Callable[[AsyncSession], Awaitable[dict[str, int]]]], ...] = (
        (
            "provision",
            lambda session: provision_referral_codes(
                session,
                min_points=resolved_settings.referral_eligibility_points,
                code_length=resolved_settings.referral_code_length,
                batch_size=batch_size,
            ),
        ),
        ("wallet_sync", sync_wallets),
        (
            "success_recompute",
            lambda session: recompute_success_counts(
                session,
                min_referee_points=resolved_settings.referee_success_points,
            ),
        ),
    )
    for step, body in steps:
        counters = await _run_step(store, step=step, body=body, policy=policy)
        if counters is None:
            result["steps_failed"] += 1
            continue
        result.update(counters)

    candidates = await _run_step(
        store,
        step="topup_candidates",
        body=lambda session: _list_topup_candidates(
            session,
            points_per_referral=resolved_settings.points_per_referral,
            limit=batch_size,
        ),
        policy=policy,
    )
    if candidates is None:
        result["steps_failed"] += 1
        candidates = {}
    result["topup_candidates"] = len(candidates)

    for user_id in candidates:
        try:
            paid = await _top_up_referrer(store, user_id=user_id, settings=resolved_settings)
        except Exception:
            logger.exception("referral_topup_failed", user_id=user_id)
            result["topup_failed"] += 1
            continue
        if paid > 0:
            result["topup_awarded"] += 1
            result["topup_points"] += paid

    logger.info("referral_reconciliation_finished", **result)
    return result


async def _list_topup_candidates(
    session: AsyncSession,
    *,
    points_per_referral: int,
    limit: int,
) -> dict[int, int]:
    rows = await ReferralsRepo.list_reward_candidates(
        session,
        reason=REFERRAL_SUCCESS_BONUS_REASON,
        points_per_referral=points_per_referral,
        limit=limit,
    )
    return {user_id: count * points_per_referral - awarded for user_id, count, awarded in rows}


async def _top_up_referrer(store: Store, *, user_id: int, settings: Settings) -> int:
    async def _attempt() -> int:
        async with store.transaction() as session:
            return await top_up_referrer_in_session(
                session,
                user_id=user_id,
                points_per_referral=settings.points_per_referral,
                referral_crossing_points=settings.referral_crossing_points,
                now_utc=datetime.now(timezone.utc),
            )

    paid = await run_with_retry(
        _attempt,
        operation_name="referral_topup",
        policy=RetryPolicy.from_settings(settings),
    )
    if paid > 0:
        logger.info("referral_bonus_topped_up", user_id=user_id, points=paid)
    return paid
