from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.core.config import Settings, get_settings
from myrad.db.models.points_history import PointsEntry
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.referrals_repo import ReferralsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.retry import RetryPolicy, run_with_retry
from myrad.db.session import Store
from myrad.points.errors import PointsPreconditionError, UserNotFoundError
from myrad.points.leagues import league_for_points
from myrad.points.types import LeaderboardEntry, LedgerMismatch, PointsAward, PointsHistoryItem

logger = structlog.get_logger(__name__)

WEEKLY_WINDOW = timedelta(days=7)


async def _increment_referrer_success(
    session: AsyncSession,
    *,
    user_id: int,
    referral_code: str,
) -> None:
    # Best effort: the reconciliation job recomputes these counts from scratch.
    try:
        async with session.begin_nested():
            await ReferralsRepo.increment_success_count(session, referral_code=referral_code)
    except SQLAlchemyError:
        logger.exception(
            "referral_success_increment_failed",
            user_id=user_id,
            referral_code=referral_code,
        )


async def award_points_in_session(
    session: AsyncSession,
    *,
    user_id: int,
    points: int,
    reason: str,
    now_utc: datetime,
    referral_crossing_points: int,
) -> PointsAward:
    if not reason:
        raise PointsPreconditionError("reason is required")

    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise UserNotFoundError(f"user {user_id} not found")
    previous_total = int(user.total_points)
    referred_by = user.referred_by

    entry = await PointsRepo.create(
        session,
        entry=PointsEntry(
            id=str(uuid4()),
            user_id=user_id,
            points=points,
            reason=reason,
            created_at=now_utc,
        ),
    )
    new_total = await UsersRepo.increment_total_points(session, user_id=user_id, delta=points)
    league = league_for_points(new_total)
    await UsersRepo.set_league_if_changed(session, user_id=user_id, league=league)

    # A total reset by opt-out can cross again. The extra increment is tolerated:
    # reconciliation recounts successful referrals from current totals.
    crossed = previous_total < referral_crossing_points <= new_total
    if crossed and referred_by:
        await _increment_referrer_success(session, user_id=user_id, referral_code=referred_by)

    return PointsAward(
        id=entry.id,
        user_id=user_id,
        points=points,
        reason=reason,
        created_at=entry.created_at,
        total_points=new_total,
        league=league,
        referral_threshold_crossed=crossed,
    )


async def award_points(
    store: Store,
    *,
    user_id: int,
    points: int,
    reason: str,
    settings: Settings | None = None,
) -> PointsAward:
    """Appends a ledger entry and moves the user's running total by the same amount.

    The whole transaction is re-run on serialization conflicts and deadlocks.
    ``UserNotFoundError`` is raised without retrying.
    """
    resolved_settings = settings or get_settings()

    async def _attempt() -> PointsAward:
        async with store.transaction() as session:
            return await award_points_in_session(
                session,
                user_id=user_id,
                points=points,
                reason=reason,
                now_utc=datetime.now(timezone.utc),
                referral_crossing_points=resolved_settings.referral_crossing_points,
            )

    award = await run_with_retry(
        _attempt,
        operation_name="award_points",
        policy=RetryPolicy.from_settings(resolved_settings),
    )
    logger.info(
        "points_awarded",
        user_id=user_id,
        points=points,
        reason=reason,
        total_points=award.total_points,
        league=award.league,
        referral_threshold_crossed=award.referral_threshold_crossed,
    )
    return award


async def get_points_history(store: Store, *, user_id: int, limit: int = 50) -> list[PointsHistoryItem]:
    async with store.transaction() as session:
        entries = await PointsRepo.list_for_user(session, user_id=user_id, limit=limit)
    return [
        PointsHistoryItem(
            id=entry.id,
            points=int(entry.points),
            reason=entry.reason,
            created_at=entry.created_at,
        )
        for entry in entries
    ]


async def get_total_points(store: Store, *, user_id: int) -> int:
    async with store.transaction() as session:
        user = await UsersRepo.get_by_id(session, user_id)
    if user is None:
        raise UserNotFoundError(f"user {user_id} not found")
    return int(user.total_points)


async def get_leaderboard(store: Store, *, limit: int = 100, offset: int = 0) -> list[LeaderboardEntry]:
    async with store.transaction() as session:
        users = await UsersRepo.list_leaderboard(session, limit=limit, offset=offset)
    return [
        LeaderboardEntry(
            rank=offset + index,
            user_id=int(user.id),
            username=user.username,
            wallet_address=user.wallet_address,
            points=int(user.total_points),
            league=user.league,
        )
        for index, user in enumerate(users, start=1)
    ]


async def get_weekly_leaderboard(
    store: Store,
    *,
    limit: int = 100,
    now_utc: datetime | None = None,
) -> list[LeaderboardEntry]:
    since_utc = (now_utc or datetime.now(timezone.utc)) - WEEKLY_WINDOW
    async with store.transaction() as session:
        rows = await PointsRepo.list_weekly_totals(session, since_utc=since_utc, limit=limit)
    return [
        LeaderboardEntry(
            rank=index,
            user_id=int(user.id),
            username=user.username,
            wallet_address=user.wallet_address,
            points=weekly_points,
            league=user.league,
        )
        for index, (user, weekly_points) in enumerate(rows, start=1)
    ]


async def audit_ledger_consistency(store: Store) -> list[LedgerMismatch]:
    async with store.transaction() as session:
        rows = await PointsRepo.list_total_mismatches(session)
    mismatches = [
        LedgerMismatch(user_id=user_id, total_points=total, ledger_sum=ledger_sum)
        for user_id, total, ledger_sum in rows
    ]
    if mismatches:
        logger.warning("points_ledger_mismatch_detected", mismatches=len(mismatches))
    return mismatches


class PointsService:
    award_points = staticmethod(award_points)
    award_points_in_session = staticmethod(award_points_in_session)
    get_points_history = staticmethod(get_points_history)
    get_total_points = staticmethod(get_total_points)
    get_leaderboard = staticmethod(get_leaderboard)
    get_weekly_leaderboard = staticmethod(get_weekly_leaderboard)
    audit_ledger_consistency = staticmethod(audit_ledger_consistency)
