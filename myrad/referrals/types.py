from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ReferralOverview:
    user_id: int
    referral_code: str | None
    successful_ref: int
    bonus_points_awarded: int
    referred_by: str | None
