from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class UserView:
    id: int
    external_id: str
    email: str | None
    wallet_address: str | None
    username: str | None
    total_points: int
    league: str
    streak: int
    referred_by: str | None
    created_at: datetime
    last_active_at: datetime | None


@dataclass(frozen=True, slots=True)
class IdentityResult:
    user: UserView
    created: bool
