from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request

from myrad.contributions.service import ContributionService
from myrad.optout.service import OptOutService
from myrad.points.errors import UserNotFoundError
from myrad.points.service import PointsService
from myrad.referrals.errors import (
    ReferralAlreadyAppliedError,
    ReferralCodeNotFoundError,
    SelfReferralError,
)
from myrad.referrals.service import ReferralService
from myrad.users.errors import InvalidUsernameError, UsernameTakenError, UserPreconditionError
from myrad.users.service import UserService
from myrad.users.types import UserView

from .internal_helpers import _assert_internal_access, _store, _user_not_found
from .internal_models import (
    IdentityReconcileRequest,
    IdentityReconcileResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    OptOutResponse,
    OptOutStatusResponse,
    PointsHistoryItemResponse,
    PointsResponse,
    ReferralApplyRequest,
    ReferralResponse,
    UsernameRequest,
    UserResponse,
    WalletRequest,
)

router = APIRouter(tags=["internal", "users"])


def _as_user_response(view: UserView) -> UserResponse:
    return UserResponse(**asdict(view))


async def _require_user(request: Request, user_id: int) -> UserView:
    view = await UserService.get_user(_store(request), user_id=user_id)
    if view is None:
        raise _user_not_found()
    return view


@router.post("/internal/users/reconcile", response_model=IdentityReconcileResponse)
async def reconcile_user(
    payload: IdentityReconcileRequest,
    request: Request,
) -> IdentityReconcileResponse:
    _assert_internal_access(request)
    try:
        result = await UserService.reconcile_identity(
            _store(request),
            external_id=payload.external_id,
            email=payload.email,
            wallet_address=payload.wallet_address,
        )
    except UserPreconditionError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_INVALID_IDENTITY"}) from exc
    return IdentityReconcileResponse(user=_as_user_response(result.user), created=result.created)


@router.get("/internal/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, request: Request) -> UserResponse:
    _assert_internal_access(request)
    return _as_user_response(await _require_user(request, user_id))


@router.post("/internal/users/{user_id}/username", response_model=UserResponse)
async def set_username(user_id: int, payload: UsernameRequest, request: Request) -> UserResponse:
    _assert_internal_access(request)
    try:
        view = await UserService.set_username(
            _store(request),
            user_id=user_id,
            username=payload.username,
        )
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    except InvalidUsernameError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_USERNAME_INVALID"}) from exc
    except UsernameTakenError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_USERNAME_TAKEN"}) from exc
    return _as_user_response(view)


@router.post("/internal/users/{user_id}/wallet", response_model=UserResponse)
async def update_wallet(user_id: int, payload: WalletRequest, request: Request) -> UserResponse:
    _assert_internal_access(request)
    try:
        view = await UserService.update_wallet(
            _store(request),
            user_id=user_id,
            wallet_address=payload.wallet_address,
        )
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    except UserPreconditionError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_WALLET_INVALID"}) from exc
    return _as_user_response(view)


@router.get("/internal/users/{user_id}/points", response_model=PointsResponse)
async def get_points(
    user_id: int,
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
) -> PointsResponse:
    _assert_internal_access(request)
    user = await _require_user(request, user_id)
    history = await PointsService.get_points_history(_store(request), user_id=user_id, limit=limit)
    return PointsResponse(
        user_id=user_id,
        total_points=user.total_points,
        league=user.league,
        history=[PointsHistoryItemResponse(**asdict(item)) for item in history],
    )


@router.get("/internal/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    request: Request,
    period: Literal["all", "weekly"] = Query(default="all"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> LeaderboardResponse:
    _assert_internal_access(request)
    if period == "weekly":
        entries = await PointsService.get_weekly_leaderboard(_store(request), limit=limit)
    else:
        entries = await PointsService.get_leaderboard(_store(request), limit=limit, offset=offset)
    return LeaderboardResponse(
        period=period,
        entries=[LeaderboardEntryResponse(**asdict(entry)) for entry in entries],
    )


@router.get("/internal/users/{user_id}/referral", response_model=ReferralResponse)
async def get_referral(user_id: int, request: Request) -> ReferralResponse:
    _assert_internal_access(request)
    try:
        overview = await ReferralService.get_referral_overview(_store(request), user_id=user_id)
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    return ReferralResponse(**asdict(overview))


@router.post("/internal/users/{user_id}/referral", response_model=ReferralResponse)
async def apply_referral(
    user_id: int,
    payload: ReferralApplyRequest,
    request: Request,
) -> ReferralResponse:
    _assert_internal_access(request)
    store = _store(request)
    try:
        await ReferralService.apply_referral_code(
            store,
            user_id=user_id,
            referral_code=payload.referral_code,
        )
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    except ReferralCodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_REFERRAL_CODE_NOT_FOUND"}) from exc
    except SelfReferralError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_SELF_REFERRAL"}) from exc
    except ReferralAlreadyAppliedError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_REFERRAL_ALREADY_APPLIED"}) from exc

    overview = await ReferralService.get_referral_overview(store, user_id=user_id)
    return ReferralResponse(**asdict(overview))


@router.get("/internal/users/{user_id}/opt-out", response_model=OptOutStatusResponse)
async def get_opt_out_status(user_id: int, request: Request) -> OptOutStatusResponse:
    _assert_internal_access(request)
    await _require_user(request, user_id)
    opt_out_status = await ContributionService.get_opt_out_status(
        _store(request),
        user_id=str(user_id),
    )
    return OptOutStatusResponse(user_id=user_id, **asdict(opt_out_status))


@router.post("/internal/users/{user_id}/opt-out", response_model=OptOutResponse)
async def opt_out(user_id: int, request: Request) -> OptOutResponse:
    _assert_internal_access(request)
    try:
        result = await OptOutService.opt_out_user(_store(request), user_id=user_id)
    except UserNotFoundError as exc:
        raise _user_not_found() from exc
    return OptOutResponse(**asdict(result))
