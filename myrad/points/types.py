from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

FIRST_ACCESS_BONUS_REASON = "first_access_bonus"
REFERRAL_SUCCESS_BONUS_REASON = "referral_success_bonus"


@dataclass(frozen=True, slots=True)
class PointsAward:
    id: str
    user_id: int
    points: int
    reason: str
    created_at: datetime
    total_points: int
    league: str
    referral_threshold_crossed: bool = False


@dataclass(frozen=True, slots=True)
class PointsHistoryItem:
    id: str
    points: int
    reason: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    username: str | None
    wallet_address: str | None
    points: int
    league: str


@dataclass(frozen=True, slots=True)
class LedgerMismatch:
    user_id: int
    total_points: int
    ledger_sum: int
