from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.db.models.points_history import PointsEntry
from myrad.db.models.referrals import Referral
from myrad.db.models.users import User


class ReferralsRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: int) -> Referral | None:
        return await session.get(Referral, user_id)

    @staticmethod
    async def get_by_code(session: AsyncSession, referral_code: str) -> Referral | None:
        stmt = select(Referral).where(Referral.referral_code == referral_code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_users_missing_referral(
        session: AsyncSession,
        *,
        min_points: int,
        limit: int,
    ) -> list[tuple[int, str | None]]:
        stmt = (
            select(User.id, User.wallet_address)
            .outerjoin(Referral, Referral.user_id == User.id)
            .where(User.total_points >= min_points, Referral.user_id.is_(None))
            .order_by(User.id.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return [(int(user_id), wallet) for user_id, wallet in result.all()]

    @staticmethod
    async def create_if_absent(
        session: AsyncSession,
        *,
        user_id: int,
        referral_code: str,
        wallet_address: str | None,
    ) -> bool:
        # Absorbs both races: another run provisioned this user, or the code collided.
        stmt = (
            insert(Referral)
            .values(
                user_id=user_id,
                referral_code=referral_code,
                wallet_address=wallet_address,
                successful_ref=0,
            )
            .on_conflict_do_nothing()
            .returning(Referral.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def sync_wallet_addresses(session: AsyncSession) -> int:
        stmt = (
            update(Referral)
            .where(
                Referral.user_id == User.id,
                Referral.wallet_address.is_distinct_from(User.wallet_address),
            )
            .values(wallet_address=User.wallet_address, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def recompute_success_counts(session: AsyncSession, *, min_referee_points: int) -> int:
        qualified_referees = (
            select(func.count(User.id))
            .where(
                User.referred_by == Referral.referral_code,
                User.total_points >= min_referee_points,
            )
            .correlate(Referral)
            .scalar_subquery()
        )
        stmt = (
            update(Referral)
            .where(Referral.successful_ref != qualified_referees)
            .values(successful_ref=qualified_referees, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def increment_success_count(session: AsyncSession, *, referral_code: str) -> int:
        stmt = (
            update(Referral)
            .where(Referral.referral_code == referral_code)
            .values(successful_ref=Referral.successful_ref + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def list_reward_candidates(
        session: AsyncSession,
        *,
        reason: str,
        points_per_referral: int,
        limit: int,
    ) -> list[tuple[int, int, int]]:
        """Referrers whose bonus entries fall short of ``successful_ref * points_per_referral``.

        Returns (user_id, successful_ref, already awarded) rows.
        """
        awarded = (
            select(func.coalesce(func.sum(PointsEntry.points), 0))
            .where(PointsEntry.user_id == Referral.user_id, PointsEntry.reason == reason)
            .correlate(Referral)
            .scalar_subquery()
        )
        stmt = (
            select(Referral.user_id, Referral.successful_ref, awarded)
            .where(
                Referral.successful_ref > 0,
                Referral.successful_ref * points_per_referral > awarded,
            )
            .order_by(Referral.user_id.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return [(int(user_id), int(count), int(total)) for user_id, count, total in result.all()]
