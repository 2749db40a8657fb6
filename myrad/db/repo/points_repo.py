from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.db.models.points_history import PointsEntry
from myrad.db.models.users import User


class PointsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, entry: PointsEntry) -> PointsEntry:
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def list_for_user(
        session: AsyncSession,
        *,
        user_id: int,
        limit: int = 50,
    ) -> list[PointsEntry]:
        stmt = (
            select(PointsEntry)
            .where(PointsEntry.user_id == user_id)
            .order_by(PointsEntry.created_at.desc(), PointsEntry.id.desc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def sum_for_user(
        session: AsyncSession,
        *,
        user_id: int,
        reason: str | None = None,
    ) -> int:
        stmt = select(func.coalesce(func.sum(PointsEntry.points), 0)).where(
            PointsEntry.user_id == user_id
        )
        if reason is not None:
            stmt = stmt.where(PointsEntry.reason == reason)
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def delete_for_user(session: AsyncSession, *, user_id: int) -> int:
        stmt = delete(PointsEntry).where(PointsEntry.user_id == user_id)
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def list_weekly_totals(
        session: AsyncSession,
        *,
        since_utc: datetime,
        limit: int,
    ) -> list[tuple[User, int]]:
        weekly_points = func.sum(PointsEntry.points).label("weekly_points")
        stmt = (
            select(User, weekly_points)
            .join(PointsEntry, PointsEntry.user_id == User.id)
            .where(PointsEntry.created_at >= since_utc)
            .group_by(User.id)
            .order_by(weekly_points.desc(), User.id.asc())
            .limit(max(1, min(500, int(limit))))
        )
        result = await session.execute(stmt)
        return [(user, int(points or 0)) for user, points in result.all()]

    @staticmethod
    async def list_total_mismatches(session: AsyncSession) -> list[tuple[int, int, int]]:
        ledger_sum = (
            select(func.coalesce(func.sum(PointsEntry.points), 0))
            .where(PointsEntry.user_id == User.id)
            .correlate(User)
            .scalar_subquery()
        )
        stmt = (
            select(User.id, User.total_points, ledger_sum)
            .where(User.total_points != ledger_sum)
            .order_by(User.id.asc())
        )
        result = await session.execute(stmt)
        return [(int(user_id), int(total), int(ledger)) for user_id, total, ledger in result.all()]
