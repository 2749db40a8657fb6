from __future__ import annotations

DEFAULT_LEAGUE = "Bronze"

# (minimum total points, league), highest first.
LEAGUE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (15_000, "Diamond"),
    (5_000, "Platinum"),
    (1_500, "Gold"),
    (500, "Silver"),
)


def league_for_points(total_points: int) -> str:
    for min_points, league in LEAGUE_THRESHOLDS:
        if total_points >= min_points:
            return league
    return DEFAULT_LEAGUE
