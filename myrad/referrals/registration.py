from __future__ import annotations

import structlog

from myrad.core.referral_codes import normalize_referral_code
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.referrals_repo import ReferralsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.session import Store
from myrad.points.errors import UserNotFoundError
from myrad.points.types import REFERRAL_SUCCESS_BONUS_REASON
from myrad.referrals.errors import (
    ReferralAlreadyAppliedError,
    ReferralCodeNotFoundError,
    SelfReferralError,
)
from myrad.referrals.types import ReferralOverview

logger = structlog.get_logger(__name__)


async def apply_referral_code(store: Store, *, user_id: int, referral_code: str) -> str:
    """Records who referred ``user_id``. A user's referrer is set at most once."""
    normalized_code = normalize_referral_code(referral_code)
    if normalized_code is None:
        raise ReferralCodeNotFoundError("referral code is empty")

    async with store.transaction() as session:
        user = await UsersRepo.get_by_id_for_update(session, user_id)
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        if user.referred_by:
            raise ReferralAlreadyAppliedError(f"user {user_id} already has a referrer")

        referral = await ReferralsRepo.get_by_code(session, normalized_code)
        if referral is None:
            raise ReferralCodeNotFoundError(f"referral code {normalized_code} not found")
        if referral.user_id == user_id:
            raise SelfReferralError("users cannot apply their own referral code")

        await UsersRepo.update_profile(session, user_id=user_id, referred_by=normalized_code)

    logger.info(
        "referral_code_applied",
        user_id=user_id,
        referrer_user_id=referral.user_id,
        referral_code=normalized_code,
    )
    return normalized_code


async def get_referral_overview(store: Store, *, user_id: int) -> ReferralOverview:
    async with store.transaction() as session:
        user = await UsersRepo.get_by_id(session, user_id)
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        referral = await ReferralsRepo.get_by_user_id(session, user_id)
        bonus_points = await PointsRepo.sum_for_user(
            session,
            user_id=user_id,
            reason=REFERRAL_SUCCESS_BONUS_REASON,
        )
    return ReferralOverview(
        user_id=user_id,
        referral_code=referral.referral_code if referral is not None else None,
        successful_ref=int(referral.successful_ref) if referral is not None else 0,
        bonus_points_awarded=bonus_points,
        referred_by=user.referred_by,
    )
