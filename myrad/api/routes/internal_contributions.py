from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, Request

from myrad.contributions.errors import (
    ContributionPreconditionError,
    EmptyContributionError,
    UnknownProviderError,
)
from myrad.contributions.service import ContributionService
from myrad.contributions.types import (
    ContributionFilters,
    ContributionSubmission,
    ContributionView,
    SubmitAccepted,
    SubmitDuplicate,
    SubmitSkipped,
)
from myrad.points.errors import UserNotFoundError
from myrad.services.admission import AdmissionRejectedError

from .internal_helpers import _admission_gate, _assert_internal_access, _store, _user_not_found
from .internal_models import (
    AdmissionStatsResponse,
    ContributionListResponse,
    ContributionResponse,
    ContributionSubmitRequest,
    ContributionSubmitResponse,
    RewardBreakdownResponse,
)

router = APIRouter(tags=["internal", "contributions"])


def _as_contribution_response(view: ContributionView) -> ContributionResponse:
    return ContributionResponse(
        id=view.id,
        user_id=view.user_id,
        data_type=view.data_type.value,
        payload=view.payload,
        derived_metadata=view.derived_metadata,
        proof_id=view.proof_id,
        status=view.status,
        created_at=view.created_at,
        opt_out=view.opt_out,
    )


def _unknown_provider() -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "E_UNKNOWN_PROVIDER"})


@router.post("/internal/users/{user_id}/contributions", response_model=ContributionSubmitResponse)
async def submit_contribution(
    user_id: int,
    payload: ContributionSubmitRequest,
    request: Request,
) -> ContributionSubmitResponse:
    _assert_internal_access(request)
    submission = ContributionSubmission(
        user_id=str(user_id),
        provider_type=payload.provider_type,
        proof_id=payload.proof_id,
        payload=payload.payload,
        id=payload.id,
        derived_metadata=payload.derived_metadata,
        status=payload.status,
        processing_method=payload.processing_method,
        created_at=payload.created_at,
        wallet_address=payload.wallet_address,
    )

    try:
        async with _admission_gate(request).slot():
            result = await ContributionService.record_contribution(_store(request), submission)
    except AdmissionRejectedError as exc:
        raise HTTPException(status_code=503, detail={"code": "E_SUBMISSIONS_BUSY"}) from exc
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    except UnknownProviderError as exc:
        raise _unknown_provider() from exc
    except EmptyContributionError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_EMPTY_CONTRIBUTION"}) from exc
    except ContributionPreconditionError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_INVALID_CONTRIBUTION"}) from exc

    outcome = result.outcome
    if isinstance(outcome, SubmitDuplicate):
        raise HTTPException(
            status_code=409,
            detail={
                "code": "E_DUPLICATE_CONTRIBUTION",
                "existing_id": outcome.existing_id,
                "message": outcome.message,
            },
        )

    return ContributionSubmitResponse(
        outcome=outcome.outcome,
        contribution_id=outcome.id if isinstance(outcome, SubmitAccepted) else None,
        merged=outcome.merged if isinstance(outcome, SubmitAccepted) else False,
        resubmitted=outcome.resubmitted if isinstance(outcome, SubmitAccepted) else False,
        reason=outcome.reason if isinstance(outcome, SubmitSkipped) else None,
        points_awarded=result.points_awarded,
        breakdown=(
            RewardBreakdownResponse(**asdict(result.breakdown))
            if result.breakdown is not None
            else None
        ),
    )


@router.get("/internal/users/{user_id}/contributions", response_model=ContributionListResponse)
async def list_user_contributions(user_id: int, request: Request) -> ContributionListResponse:
    _assert_internal_access(request)
    views = await ContributionService.get_user_contributions(_store(request), user_id=str(user_id))
    return ContributionListResponse(items=[_as_contribution_response(view) for view in views])


@router.get("/internal/contributions", response_model=ContributionListResponse)
async def query_contributions(
    request: Request,
    provider_type: str | None = Query(default=None, max_length=64),
    user_id: str | None = Query(default=None, max_length=64),
    min_orders: int | None = Query(default=None, ge=0),
    min_spend: Decimal | None = Query(default=None, ge=0),
    segment: str | None = Query(default=None, max_length=128),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> ContributionListResponse:
    _assert_internal_access(request)
    try:
        parsed_provider = (
            ContributionService.parse_provider_type(provider_type) if provider_type else None
        )
    except UnknownProviderError as exc:
        raise _unknown_provider() from exc

    filters = ContributionFilters(
        provider_type=parsed_provider,
        user_id=user_id,
        min_orders=min_orders,
        min_spend=min_spend,
        segment=segment,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    views = await ContributionService.query_contributions(_store(request), filters)
    return ContributionListResponse(items=[_as_contribution_response(view) for view in views])


@router.get("/internal/contributions/by-proof/{proof_id}", response_model=ContributionResponse)
async def get_contribution_by_proof(proof_id: str, request: Request) -> ContributionResponse:
    _assert_internal_access(request)
    view = await ContributionService.find_contribution_by_proof_id(_store(request), proof_id=proof_id)
    if view is None:
        raise HTTPException(status_code=404, detail={"code": "E_CONTRIBUTION_NOT_FOUND"})
    return _as_contribution_response(view)


@router.get("/internal/admission", response_model=AdmissionStatsResponse)
async def admission_stats(request: Request) -> AdmissionStatsResponse:
    _assert_internal_access(request)
    return AdmissionStatsResponse(**asdict(_admission_gate(request).stats()))
