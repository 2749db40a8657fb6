from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    id: int
    external_id: str
    email: str | None = None
    wallet_address: str | None = None
    username: str | None = None
    total_points: int
    league: str
    streak: int = Field(ge=0)
    referred_by: str | None = None
    created_at: datetime
    last_active_at: datetime | None = None


class IdentityReconcileRequest(BaseModel):
    external_id: str = Field(min_length=1, max_length=256)
    email: str | None = Field(default=None, max_length=320)
    wallet_address: str | None = Field(default=None, max_length=128)


class IdentityReconcileResponse(BaseModel):
    user: UserResponse
    created: bool


class UsernameRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)


class WalletRequest(BaseModel):
    wallet_address: str = Field(min_length=1, max_length=128)


class ContributionSubmitRequest(BaseModel):
    provider_type: str = Field(min_length=1, max_length=64)
    proof_id: str = Field(min_length=1, max_length=512)
    payload: dict[str, Any] | None = None
    derived_metadata: dict[str, Any] | None = None
    id: str | None = Field(default=None, min_length=1, max_length=64)
    status: str = Field(default="verified", min_length=1, max_length=32)
    processing_method: str | None = Field(default=None, max_length=64)
    created_at: datetime | None = None
    wallet_address: str | None = Field(default=None, max_length=128)


class RewardBreakdownResponse(BaseModel):
    total: int
    base: int
    bonus: int
    extras: dict[str, int] = Field(default_factory=dict)


class ContributionSubmitResponse(BaseModel):
    outcome: str
    contribution_id: str | None = None
    merged: bool = False
    resubmitted: bool = False
    reason: str | None = None
    points_awarded: int = Field(ge=0)
    breakdown: RewardBreakdownResponse | None = None


class ContributionResponse(BaseModel):
    id: str
    user_id: str
    data_type: str
    payload: dict[str, Any]
    derived_metadata: dict[str, Any] | None = None
    proof_id: str
    status: str
    created_at: datetime
    opt_out: bool


class ContributionListResponse(BaseModel):
    items: list[ContributionResponse]


class PointsHistoryItemResponse(BaseModel):
    id: str
    points: int
    reason: str
    created_at: datetime


class PointsResponse(BaseModel):
    user_id: int
    total_points: int
    league: str
    history: list[PointsHistoryItemResponse]


class LeaderboardEntryResponse(BaseModel):
    rank: int = Field(ge=1)
    user_id: int
    username: str | None = None
    wallet_address: str | None = None
    points: int
    league: str


class LeaderboardResponse(BaseModel):
    period: str
    entries: list[LeaderboardEntryResponse]


class ReferralApplyRequest(BaseModel):
    referral_code: str = Field(min_length=1, max_length=16)


class ReferralResponse(BaseModel):
    user_id: int
    referral_code: str | None = None
    successful_ref: int = Field(ge=0)
    bonus_points_awarded: int
    referred_by: str | None = None


class OptOutStatusResponse(BaseModel):
    user_id: int
    opted_out: bool
    contribution_count: int = Field(ge=0)
    active_count: int = Field(ge=0)


class OptOutResponse(BaseModel):
    success: bool
    user_id: int
    contributions_updated: int = Field(ge=0)
    ledger_entries_removed: int = Field(ge=0)
    points_reset: bool
    new_points_total: int


class AdmissionStatsResponse(BaseModel):
    in_flight: int = Field(ge=0)
    queued: int = Field(ge=0)
    max_concurrent: int = Field(ge=1)
    max_queue: int | None = None
