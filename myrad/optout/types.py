from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OptOutResult:
    success: bool
    user_id: int
    contributions_updated: int
    ledger_entries_removed: int
    points_reset: bool
    new_points_total: int
