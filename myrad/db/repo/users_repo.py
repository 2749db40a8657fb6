from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: int) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, user_id: int) -> User | None:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_external_id(session: AsyncSession, external_id: str) -> User | None:
        stmt = select(User).where(User.external_id == external_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_external_id_for_update(
        session: AsyncSession,
        external_id: str,
    ) -> User | None:
        stmt = (
            select(User)
            .where(User.external_id == external_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_username_ci(session: AsyncSession, username: str) -> User | None:
        stmt = select(User).where(func.lower(User.username) == username.lower())
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        external_id: str,
        email: str | None,
        wallet_address: str | None,
        total_points: int,
        now_utc: datetime,
    ) -> User:
        user = User(
            external_id=external_id,
            email=email,
            wallet_address=wallet_address,
            total_points=total_points,
            league="Bronze",
            streak=0,
            created_at=now_utc,
            updated_at=now_utc,
            last_active_at=now_utc,
        )
        session.add(user)
        await session.flush()
        return user

    @staticmethod
    async def increment_total_points(session: AsyncSession, *, user_id: int, delta: int) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(total_points=User.total_points + delta, updated_at=func.now())
            .returning(User.total_points)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def set_league_if_changed(session: AsyncSession, *, user_id: int, league: str) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id, User.league != league)
            .values(league=league)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def reset_points(
        session: AsyncSession,
        *,
        user_id: int,
        total_points: int,
        league: str,
    ) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(total_points=total_points, league=league, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def update_profile(session: AsyncSession, *, user_id: int, **values: object) -> int:
        if not values:
            return 0
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**values, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def touch_last_active(session: AsyncSession, user_id: int, seen_at: datetime) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(last_active_at=seen_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def list_leaderboard(
        session: AsyncSession,
        *,
        limit: int,
        offset: int = 0,
    ) -> list[User]:
        resolved_limit = max(1, min(500, int(limit)))
        stmt = (
            select(User)
            .order_by(User.total_points.desc(), User.created_at.asc(), User.id.asc())
            .limit(resolved_limit)
            .offset(max(0, int(offset)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
