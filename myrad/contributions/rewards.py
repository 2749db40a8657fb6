from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from myrad.contributions.errors import EmptyContributionError
from myrad.contributions.extraction import dig, to_int
from myrad.contributions.providers import ProviderType, parse_provider_type
from myrad.contributions.types import RewardBreakdown

CONTRIBUTION_REWARD_REASON = "data_contribution"

STRAVA_TIER_BONUS = {"elite": 50, "enthusiast": 25}
UBER_COMMUTER_BONUS = 20


def _require_positive(count: int | None, *, what: str) -> int:
    if count is None or count <= 0:
        raise EmptyContributionError(f"contribution has no {what}")
    return count


def _per_item_reward(*, base: int, per_item: int, count: int) -> RewardBreakdown:
    bonus = count * per_item
    return RewardBreakdown(total=base + bonus, base=base, bonus=bonus)


def _github_reward(payload: Mapping[str, Any]) -> RewardBreakdown:
    return RewardBreakdown(total=20, base=20, bonus=0)


def _netflix_reward(payload: Mapping[str, Any]) -> RewardBreakdown:
    titles = _require_positive(
        to_int(dig(payload, "viewing_summary", "total_titles_watched")),
        what="watched titles",
    )
    return _per_item_reward(base=50, per_item=10, count=titles)


def _order_history_reward(payload: Mapping[str, Any]) -> RewardBreakdown:
    orders = _require_positive(
        to_int(dig(payload, "transaction_data", "summary", "total_orders")),
        what="orders",
    )
    return _per_item_reward(base=50, per_item=10, count=orders)


def _strava_reward(payload: Mapping[str, Any]) -> RewardBreakdown:
    activities = _require_positive(
        to_int(dig(payload, "activity_totals", "total_activities")),
        what="activities",
    )
    tier = dig(payload, "fitness_profile", "tier") or "casual"
    tier_bonus = STRAVA_TIER_BONUS.get(str(tier), 0)
    bonus = activities * 5 + tier_bonus
    return RewardBreakdown(total=75 + bonus, base=75, bonus=bonus, extras={"tier_bonus": tier_bonus})


def _uber_rides_reward(payload: Mapping[str, Any]) -> RewardBreakdown:
    rides = _require_positive(
        to_int(dig(payload, "ride_summary", "total_rides")),
        what="rides",
    )
    commuter_bonus = UBER_COMMUTER_BONUS if dig(payload, "temporal_behavior", "is_commuter") else 0
    bonus = rides * 5 + commuter_bonus
    return RewardBreakdown(
        total=60 + bonus,
        base=60,
        bonus=bonus,
        extras={"commuter_bonus": commuter_bonus},
    )


REWARD_RULES: dict[ProviderType, Callable[[Mapping[str, Any]], RewardBreakdown]] = {
    ProviderType.GITHUB: _github_reward,
    ProviderType.NETFLIX: _netflix_reward,
    ProviderType.ZOMATO: _order_history_reward,
    ProviderType.UBEREATS: _order_history_reward,
    ProviderType.BLINKIT: _order_history_reward,
    ProviderType.ZEPTO: _order_history_reward,
    ProviderType.STRAVA: _strava_reward,
    ProviderType.UBER_RIDES: _uber_rides_reward,
}


def contribution_reward(
    provider_type: ProviderType | str,
    payload: Mapping[str, Any],
) -> RewardBreakdown:
    """Points earned for one accepted contribution.

    Raises ``EmptyContributionError`` when the payload has nothing countable
    in it (zero orders, titles, activities or rides).
    """
    return REWARD_RULES[parse_provider_type(provider_type)](payload)
