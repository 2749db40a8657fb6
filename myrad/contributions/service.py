from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.contributions.errors import ContributionPreconditionError
from myrad.contributions.providers import (
    ProviderSpec,
    get_provider_spec,
    iter_provider_specs,
    parse_provider_type,
)
from myrad.contributions.rewards import CONTRIBUTION_REWARD_REASON, contribution_reward
from myrad.contributions.types import (
    ContributionFilters,
    ContributionRecordResult,
    ContributionSubmission,
    ContributionView,
    OptOutStatus,
    SubmitAccepted,
    SubmitDuplicate,
    SubmitOutcome,
    SubmitSkipped,
)
from myrad.core.config import Settings, get_settings
from myrad.db.errors import extract_constraint_name
from myrad.db.models.contributions import ContributionEnvelope, fingerprint_index_name
from myrad.db.repo.contributions_repo import ContributionsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.retry import RetryPolicy, run_with_retry
from myrad.db.session import Store
from myrad.points.errors import UserNotFoundError
from myrad.points.service import award_points

logger = structlog.get_logger(__name__)

_ID_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
PROOF_ALREADY_SUBMITTED_MESSAGE = "This proof has already been submitted."


def generate_contribution_id(now: float | None = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_ID_SUFFIX_ALPHABET) for _ in range(6))
    return f"{millis}_{suffix}"


def _validate(submission: ContributionSubmission) -> None:
    if not submission.user_id:
        raise ContributionPreconditionError("user_id is required")
    if not submission.proof_id:
        raise ContributionPreconditionError("proof_id is required")


def _row_values(
    spec: ProviderSpec,
    submission: ContributionSubmission,
    *,
    contribution_id: str,
    indexed_fields: dict[str, Any],
) -> dict[str, Any]:
    return {
        "id": contribution_id,
        "user_id": str(submission.user_id),
        "reclaim_proof_id": submission.proof_id,
        "status": submission.status or "verified",
        "processing_method": submission.processing_method,
        "created_at": submission.created_at or datetime.now(timezone.utc),
        "sellable_data": submission.payload,
        "metadata": submission.derived_metadata,
        "wallet_address": submission.wallet_address,
        "opt_out": False,
        **indexed_fields,
    }


async def _proof_held_by_other_user(
    session: AsyncSession,
    *,
    spec: ProviderSpec,
    proof_id: str,
) -> SubmitDuplicate:
    holder = await ContributionsRepo.get_by_proof_id(session, spec=spec, proof_id=proof_id)
    return SubmitDuplicate(
        existing_id=holder.id if holder is not None else "",
        message=PROOF_ALREADY_SUBMITTED_MESSAGE,
    )


async def submit_contribution_in_session(
    session: AsyncSession,
    *,
    spec: ProviderSpec,
    submission: ContributionSubmission,
    retry_on_fingerprint_race: bool = True,
) -> SubmitAccepted | SubmitDuplicate:
    """Runs duplicate detection and the proof-id upsert inside one open transaction.

    The caller owns commit/rollback. A ``SubmitDuplicate`` result means nothing
    was written and the transaction should be rolled back. A proof already
    stored for the same user is rewritten and reported as ``resubmitted``; one
    stored for another user is a duplicate.

    A concurrent insert of the same fingerprint trips the partial unique index;
    the write is undone to its savepoint and the decision is taken again
    against the committed winner.
    """
    indexed_fields = spec.extract(submission.payload or {})
    fingerprint = spec.fingerprint(indexed_fields)
    reused_row: ContributionEnvelope | None = None

    if fingerprint is not None:
        existing = await ContributionsRepo.find_active_by_fingerprint_for_update(
            session,
            spec=spec,
            fingerprint=fingerprint,
        )
        # A match on the row holding this very proof is a resubmission, left to the upsert.
        if existing is not None and existing.reclaim_proof_id != submission.proof_id:
            if not spec.accepts_as_merge(indexed_fields, existing):
                return SubmitDuplicate(existing_id=existing.id, message=spec.duplicate_message)
            reused_row = existing
        elif existing is None and spec.reactivates_opted_out:
            reused_row = await ContributionsRepo.find_opted_out_by_fingerprint_for_update(
                session,
                spec=spec,
                user_id=str(submission.user_id),
                fingerprint=fingerprint,
            )

    contribution_id = reused_row.id if reused_row is not None else (
        submission.id or generate_contribution_id()
    )
    values = _row_values(
        spec,
        submission,
        contribution_id=contribution_id,
        indexed_fields=indexed_fields,
    )

    inserted = False
    try:
        async with session.begin_nested():
            if reused_row is not None and reused_row.reclaim_proof_id != submission.proof_id:
                stored_id = await ContributionsRepo.overwrite_by_id(
                    session,
                    spec=spec,
                    contribution_id=reused_row.id,
                    values=values,
                )
                if stored_id is None:
                    raise LookupError(f"locked contribution {reused_row.id} disappeared")
            else:
                stored = await ContributionsRepo.upsert_by_proof_id(session, spec=spec, values=values)
                if stored is None:
                    return await _proof_held_by_other_user(
                        session,
                        spec=spec,
                        proof_id=submission.proof_id,
                    )
                stored_id, inserted = stored
    except IntegrityError as exc:
        if not retry_on_fingerprint_race or extract_constraint_name(exc) != fingerprint_index_name(
            spec.table_name
        ):
            raise
        logger.info(
            "contribution_fingerprint_race_detected",
            provider=spec.provider_type.value,
            user_id=submission.user_id,
        )
        return await submit_contribution_in_session(
            session,
            spec=spec,
            submission=submission,
            retry_on_fingerprint_race=False,
        )

    merged = reused_row is not None and reused_row.reclaim_proof_id != submission.proof_id
    return SubmitAccepted(
        id=stored_id,
        merged=merged,
        resubmitted=not merged and not inserted,
    )


async def _submit_once(
    store: Store,
    *,
    spec: ProviderSpec,
    submission: ContributionSubmission,
) -> SubmitAccepted | SubmitDuplicate:
    async with store.session() as session:
        try:
            outcome = await submit_contribution_in_session(session, spec=spec, submission=submission)
            if isinstance(outcome, SubmitDuplicate):
                await session.rollback()
            else:
                await session.commit()
            return outcome
        except Exception:
            await session.rollback()
            raise


async def submit_contribution(
    store: Store,
    submission: ContributionSubmission,
    *,
    settings: Settings | None = None,
) -> SubmitOutcome:
    """Accepts, merges or rejects one verified contribution.

    Returns ``SubmitSkipped`` for an empty payload. Serialization conflicts
    and deadlocks re-run the whole transaction, up to the configured attempts.
    """
    spec = get_provider_spec(submission.provider_type)
    if not submission.payload:
        logger.info(
            "contribution_skipped",
            provider=spec.provider_type.value,
            user_id=submission.user_id,
            reason="empty_payload",
        )
        return SubmitSkipped()
    _validate(submission)

    resolved_settings = settings or get_settings()
    outcome = await run_with_retry(
        lambda: _submit_once(store, spec=spec, submission=submission),
        operation_name="submit_contribution",
        policy=RetryPolicy.from_settings(resolved_settings),
    )

    if isinstance(outcome, SubmitDuplicate):
        logger.info(
            "contribution_duplicate_rejected",
            provider=spec.provider_type.value,
            user_id=submission.user_id,
            existing_id=outcome.existing_id,
        )
    else:
        logger.info(
            "contribution_accepted",
            provider=spec.provider_type.value,
            user_id=submission.user_id,
            contribution_id=outcome.id,
            merged=outcome.merged,
            resubmitted=outcome.resubmitted,
        )
    return outcome


async def record_contribution(
    store: Store,
    submission: ContributionSubmission,
    *,
    settings: Settings | None = None,
) -> ContributionRecordResult:
    """Stores a contribution for a known user and awards its points.

    Points are paid for a newly stored proof or a merge, never for a proof the
    user already submitted.
    """
    resolved_settings = settings or get_settings()
    spec = get_provider_spec(submission.provider_type)
    _validate(submission)
    user_id = int(submission.user_id)

    async with store.transaction() as session:
        user = await UsersRepo.get_by_id(session, user_id)
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        if submission.wallet_address and not user.wallet_address:
            await UsersRepo.update_profile(
                session,
                user_id=user_id,
                wallet_address=submission.wallet_address,
            )

    if not submission.payload:
        return ContributionRecordResult(outcome=SubmitSkipped(), points_awarded=0, breakdown=None)

    breakdown = contribution_reward(submission.provider_type, submission.payload)
    outcome = await submit_contribution(store, submission, settings=resolved_settings)
    if not isinstance(outcome, SubmitAccepted):
        return ContributionRecordResult(outcome=outcome, points_awarded=0, breakdown=None)
    if outcome.resubmitted:
        # The proof was paid for when it was first stored.
        logger.info(
            "contribution_resubmission_not_rewarded",
            provider=spec.provider_type.value,
            user_id=user_id,
            contribution_id=outcome.id,
        )
        return ContributionRecordResult(outcome=outcome, points_awarded=0, breakdown=None)

    if breakdown.total > 0:
        await award_points(
            store,
            user_id=user_id,
            points=breakdown.total,
            reason=CONTRIBUTION_REWARD_REASON,
            settings=resolved_settings,
        )
    now_utc = datetime.now(timezone.utc)
    async with store.transaction() as session:
        await UsersRepo.update_profile(
            session,
            user_id=user_id,
            last_contribution_date=now_utc,
            last_active_at=now_utc,
        )

    return ContributionRecordResult(
        outcome=outcome,
        points_awarded=breakdown.total,
        breakdown=breakdown,
    )


def _to_view(spec: ProviderSpec, row: ContributionEnvelope) -> ContributionView:
    return ContributionView(
        id=row.id,
        user_id=row.user_id,
        data_type=spec.provider_type,
        payload=row.sellable_data or {},
        derived_metadata=row.metadata_,
        proof_id=row.reclaim_proof_id,
        status=row.status,
        created_at=row.created_at,
        opt_out=bool(row.opt_out),
        indexed_fields={name: getattr(row, name, None) for name in spec.indexed_field_names()},
    )


def _newest_first(views: list[ContributionView]) -> list[ContributionView]:
    return sorted(views, key=lambda view: (view.created_at, view.id), reverse=True)


async def query_contributions(store: Store, filters: ContributionFilters) -> list[ContributionView]:
    specs = (
        (get_provider_spec(filters.provider_type),)
        if filters.provider_type is not None
        else iter_provider_specs()
    )
    views: list[ContributionView] = []
    async with store.transaction() as session:
        for spec in specs:
            rows = await ContributionsRepo.list_filtered(session, spec=spec, filters=filters)
            views.extend(_to_view(spec, row) for row in rows)
    if filters.provider_type is not None:
        return views
    return _newest_first(views)


async def get_user_contributions(store: Store, *, user_id: str) -> list[ContributionView]:
    views: list[ContributionView] = []
    async with store.transaction() as session:
        for spec in iter_provider_specs():
            rows = await ContributionsRepo.list_active_for_user(
                session,
                spec=spec,
                user_id=str(user_id),
            )
            views.extend(_to_view(spec, row) for row in rows)
    return _newest_first(views)


async def find_contribution_by_proof_id(store: Store, *, proof_id: str) -> ContributionView | None:
    async with store.transaction() as session:
        for spec in iter_provider_specs():
            row = await ContributionsRepo.get_by_proof_id(session, spec=spec, proof_id=proof_id)
            if row is not None:
                return _to_view(spec, row)
    return None


async def get_opt_out_status(store: Store, *, user_id: str) -> OptOutStatus:
    total = 0
    active = 0
    async with store.transaction() as session:
        for spec in iter_provider_specs():
            spec_total, spec_active = await ContributionsRepo.count_for_user(
                session,
                spec=spec,
                user_id=str(user_id),
            )
            total += spec_total
            active += spec_active
    return OptOutStatus(
        opted_out=total > 0 and active == 0,
        contribution_count=total,
        active_count=active,
    )


class ContributionService:
    parse_provider_type = staticmethod(parse_provider_type)
    submit_contribution = staticmethod(submit_contribution)
    submit_contribution_in_session = staticmethod(submit_contribution_in_session)
    record_contribution = staticmethod(record_contribution)
    query_contributions = staticmethod(query_contributions)
    get_user_contributions = staticmethod(get_user_contributions)
    find_contribution_by_proof_id = staticmethod(find_contribution_by_proof_id)
    get_opt_out_status = staticmethod(get_opt_out_status)
