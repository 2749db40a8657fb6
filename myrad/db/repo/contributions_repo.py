from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import and_, func, literal_column, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.contributions.providers import ProviderSpec
from myrad.contributions.types import ContributionFilters
from myrad.db.models.contributions import ContributionEnvelope

ENVELOPE_MUTABLE_COLUMNS = (
    "status",
    "processing_method",
    "sellable_data",
    "metadata",
    "wallet_address",
)


def _fingerprint_clause(spec: ProviderSpec, fingerprint: Sequence[Any]):
    return and_(
        *(
            spec.column(name) == value
            for name, value in zip(spec.fingerprint_fields, fingerprint, strict=True)
        )
    )


def _mutable_values(spec: ProviderSpec, values: Mapping[str, Any]) -> dict[str, Any]:
    mutable = {name: values[name] for name in ENVELOPE_MUTABLE_COLUMNS if name in values}
    for name in spec.indexed_field_names():
        mutable[name] = values.get(name)
    return mutable


class ContributionsRepo:
    @staticmethod
    async def find_active_by_fingerprint_for_update(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        fingerprint: Sequence[Any],
    ) -> ContributionEnvelope | None:
        model = spec.model
        stmt = (
            select(model)
            .where(_fingerprint_clause(spec, fingerprint), model.opt_out.is_not(True))
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(1)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def find_opted_out_by_fingerprint_for_update(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        user_id: str,
        fingerprint: Sequence[Any],
    ) -> ContributionEnvelope | None:
        model = spec.model
        stmt = (
            select(model)
            .where(
                model.user_id == user_id,
                _fingerprint_clause(spec, fingerprint),
                model.opt_out.is_(True),
            )
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(1)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert_by_proof_id(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        values: Mapping[str, Any],
    ) -> tuple[str, bool] | None:
        """Inserts the row or rewrites the one already holding this proof id.

        Returns ``(id, inserted)``. The conflict branch keeps the stored row id,
        owner and creation time and always clears the opt-out flag. It only
        fires for the same user: a proof held by someone else is left alone
        and ``None`` is returned.
        """
        table = spec.model.__table__
        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.reclaim_proof_id],
            set_={
                **{name: stmt.excluded[name] for name in _mutable_values(spec, values)},
                "opt_out": False,
                "updated_at": func.now(),
            },
            where=table.c.user_id == stmt.excluded.user_id,
        ).returning(table.c.id, literal_column("xmax = 0").label("inserted"))
        result = await session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return str(row.id), bool(row.inserted)

    @staticmethod
    async def overwrite_by_id(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        contribution_id: str,
        values: Mapping[str, Any],
    ) -> str | None:
        table = spec.model.__table__
        stmt = (
            update(table)
            .where(table.c.id == contribution_id)
            .values(
                **_mutable_values(spec, values),
                user_id=values["user_id"],
                reclaim_proof_id=values["reclaim_proof_id"],
                opt_out=False,
                updated_at=func.now(),
            )
            .returning(table.c.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_id(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        contribution_id: str,
    ) -> ContributionEnvelope | None:
        return await session.get(spec.model, contribution_id)

    @staticmethod
    async def get_by_proof_id(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        proof_id: str,
    ) -> ContributionEnvelope | None:
        stmt = select(spec.model).where(spec.model.reclaim_proof_id == proof_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_filtered(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        filters: ContributionFilters,
    ) -> list[ContributionEnvelope]:
        model = spec.model
        stmt = select(model).where(model.opt_out.is_not(True))
        if filters.user_id is not None:
            stmt = stmt.where(model.user_id == filters.user_id)
        if filters.min_orders is not None and spec.count_field is not None:
            stmt = stmt.where(spec.column(spec.count_field) >= filters.min_orders)
        if filters.min_spend is not None and spec.spend_field is not None:
            stmt = stmt.where(spec.column(spec.spend_field) >= filters.min_spend)
        if filters.segment is not None and spec.segment_field is not None:
            stmt = stmt.where(spec.column(spec.segment_field) == filters.segment)
        if filters.start_date is not None:
            stmt = stmt.where(model.created_at >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(model.created_at <= filters.end_date)

        stmt = stmt.order_by(model.created_at.desc(), model.id.desc())
        if filters.limit is not None:
            stmt = stmt.limit(max(1, int(filters.limit)))
        if filters.offset:
            stmt = stmt.offset(max(0, int(filters.offset)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_active_for_user(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        user_id: str,
    ) -> list[ContributionEnvelope]:
        model = spec.model
        stmt = (
            select(model)
            .where(model.user_id == user_id, model.opt_out.is_not(True))
            .order_by(model.created_at.desc(), model.id.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def count_for_user(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        user_id: str,
    ) -> tuple[int, int]:
        """Returns (all rows, rows still visible to the marketplace) owned by the user."""
        model = spec.model
        stmt = select(
            func.count(model.id),
            func.count(model.id).filter(model.opt_out.is_not(True)),
        ).where(model.user_id == user_id)
        total, active = (await session.execute(stmt)).one()
        return int(total or 0), int(active or 0)

    @staticmethod
    async def mark_opted_out_for_user(
        session: AsyncSession,
        *,
        spec: ProviderSpec,
        user_id: str,
    ) -> int:
        model = spec.model
        stmt = (
            update(model)
            .where(model.user_id == user_id, model.opt_out.is_not(True))
            .values(opt_out=True, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0
