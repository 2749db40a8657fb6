from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import structlog

from myrad.contributions.providers import iter_provider_specs
from myrad.core.config import Settings, get_settings
from myrad.db.models.points_history import PointsEntry
from myrad.db.repo.contributions_repo import ContributionsRepo
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.retry import RetryPolicy, run_with_retry
from myrad.db.session import Store
from myrad.optout.types import OptOutResult
from myrad.points.errors import UserNotFoundError
from myrad.points.leagues import league_for_points
from myrad.points.types import FIRST_ACCESS_BONUS_REASON

logger = structlog.get_logger(__name__)


async def opt_out_user(
    store: Store,
    *,
    user_id: int,
    baseline_points: int | None = None,
    settings: Settings | None = None,
) -> OptOutResult:
    """Withdraws every contribution of the user from sale and resets their points.

    Contributions are flagged, never deleted. The ledger is replaced by a
    single baseline entry so ``total_points`` still equals the ledger sum.
    Calling it again leaves the same final state.
    """
    resolved_settings = settings or get_settings()
    if baseline_points is None:
        baseline_points = resolved_settings.baseline_points

    async def _attempt() -> OptOutResult:
        now_utc = datetime.now(timezone.utc)
        async with store.transaction() as session:
            user = await UsersRepo.get_by_id_for_update(session, user_id)
            if user is None:
                raise UserNotFoundError(f"user {user_id} not found")

            contributions_updated = 0
            for spec in iter_provider_specs():
                contributions_updated += await ContributionsRepo.mark_opted_out_for_user(
                    session,
                    spec=spec,
                    user_id=str(user_id),
                )

            removed = await PointsRepo.delete_for_user(session, user_id=user_id)
            await PointsRepo.create(
                session,
                entry=PointsEntry(
                    id=str(uuid4()),
                    user_id=user_id,
                    points=baseline_points,
                    reason=FIRST_ACCESS_BONUS_REASON,
                    created_at=now_utc,
                ),
            )
            await UsersRepo.reset_points(
                session,
                user_id=user_id,
                total_points=baseline_points,
                league=league_for_points(baseline_points),
            )
        return OptOutResult(
            success=True,
            user_id=user_id,
            contributions_updated=contributions_updated,
            ledger_entries_removed=removed,
            points_reset=True,
            new_points_total=baseline_points,
        )

    result = await run_with_retry(
        _attempt,
        operation_name="opt_out_user",
        policy=RetryPolicy.from_settings(resolved_settings),
    )
    logger.info(
        "user_opted_out",
        user_id=user_id,
        contributions_updated=result.contributions_updated,
        ledger_entries_removed=result.ledger_entries_removed,
        new_points_total=result.new_points_total,
    )
    return result


class OptOutService:
    opt_out_user = staticmethod(opt_out_user)
