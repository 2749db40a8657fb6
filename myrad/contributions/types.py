from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from myrad.contributions.providers import ProviderType


@dataclass(frozen=True, slots=True)
class ContributionSubmission:
    user_id: str
    provider_type: ProviderType | str
    proof_id: str
    payload: dict[str, Any] | None
    id: str | None = None
    derived_metadata: dict[str, Any] | None = None
    status: str = "verified"
    processing_method: str | None = None
    created_at: datetime | None = None
    wallet_address: str | None = None


@dataclass(frozen=True, slots=True)
class SubmitAccepted:
    id: str
    merged: bool = False
    resubmitted: bool = False

    outcome = "accepted"


@dataclass(frozen=True, slots=True)
class SubmitDuplicate:
    existing_id: str
    message: str

    outcome = "duplicate"


@dataclass(frozen=True, slots=True)
class SubmitSkipped:
    reason: str = "empty_payload"

    outcome = "skipped"


SubmitOutcome = SubmitAccepted | SubmitDuplicate | SubmitSkipped


@dataclass(frozen=True, slots=True)
class ContributionFilters:
    provider_type: ProviderType | None = None
    user_id: str | None = None
    min_orders: int | None = None
    min_spend: Decimal | None = None
    segment: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ContributionView:
    id: str
    user_id: str
    data_type: ProviderType
    payload: dict[str, Any]
    derived_metadata: dict[str, Any] | None
    proof_id: str
    status: str
    created_at: datetime
    opt_out: bool = False
    indexed_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OptOutStatus:
    opted_out: bool
    contribution_count: int
    active_count: int


@dataclass(frozen=True, slots=True)
class RewardBreakdown:
    total: int
    base: int
    bonus: int
    extras: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ContributionRecordResult:
    outcome: SubmitOutcome
    points_awarded: int
    breakdown: RewardBreakdown | None
