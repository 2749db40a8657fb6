"""Pure mappings from a provider payload to the flat columns indexed per provider table.

Nothing here touches the store. Missing or malformed values become ``None``
so that the fingerprint check can tell "absent" apart from zero.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_CENTS = Decimal("0.01")


def dig(payload: Mapping[str, Any] | None, *path: str) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            return int(value)
        except (ValueError, OverflowError, InvalidOperation):
            return None
    if isinstance(value, str):
        match = _LEADING_INT_RE.match(value)
        return int(match.group(1)) if match else None
    return None


def to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = _LEADING_NUMBER_RE.match(value)
        if match is None:
            return None
        value = match.group(1)
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed.quantize(_CENTS, rounding=ROUND_HALF_UP)


def to_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def to_flag(value: Any) -> bool:
    return bool(value)


def _quality_score(payload: Mapping[str, Any]) -> int | None:
    return to_int(dig(payload, "metadata", "data_quality", "score"))


def _privacy_cohort(payload: Mapping[str, Any]) -> str | None:
    return to_text(dig(payload, "metadata", "privacy_compliance", "cohort_id"))


def extract_zomato_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    summary = dig(payload, "transaction_data", "summary")
    return {
        "total_orders": to_int(dig(summary, "total_orders")),
        "total_gmv": to_decimal(dig(summary, "total_gmv")),
        "avg_order_value": to_decimal(dig(summary, "avg_order_value")),
        "data_window_days": to_int(dig(summary, "data_window_days")),
        "frequency_tier": to_text(
            dig(payload, "transaction_data", "frequency_metrics", "frequency_tier")
        ),
        "lifestyle_segment": to_text(
            dig(payload, "audience_segment", "dmp_attributes", "lifestyle_segment")
        ),
        "city_cluster": to_text(dig(payload, "geo_data", "city_cluster")),
        "data_quality_score": _quality_score(payload),
        "cohort_id": _privacy_cohort(payload),
    }


def extract_github_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    follower_count = None
    for path in (
        ("social_metrics", "follower_count"),
        ("developer_profile", "follower_count"),
        ("data", "followers"),
    ):
        candidate = dig(payload, *path)
        if candidate is not None:
            follower_count = to_int(candidate)
            break

    return {
        "username": to_text(dig(payload, "data", "username")),
        "follower_count": follower_count,
        "contribution_count": to_int(dig(payload, "activity_metrics", "yearly_contributions")),
        "developer_tier": to_text(dig(payload, "developer_profile", "tier")),
        "data_quality_score": _quality_score(payload),
        "cohort_id": _privacy_cohort(payload),
    }


def extract_netflix_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    summary = dig(payload, "viewing_summary")
    return {
        "total_titles_watched": to_int(dig(summary, "total_titles_watched")),
        "total_watch_hours": to_decimal(dig(summary, "total_watch_hours")),
        "engagement_tier": to_text(dig(summary, "engagement_tier")),
        "segment_id": to_text(dig(payload, "audience_segment", "segment_id")),
        "cohort_id": _privacy_cohort(payload),
    }


def extract_order_history_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Shared shape of the grocery and food-delivery providers (Blinkit, Zepto, Uber Eats)."""
    summary = dig(payload, "transaction_data", "summary")
    return {
        "total_orders": to_int(dig(summary, "total_orders")),
        "total_spend": to_decimal(dig(summary, "total_spend")),
        "avg_order_value": to_decimal(dig(summary, "avg_order_value")),
        "total_items": to_int(dig(summary, "total_items")),
        "data_window_days": to_int(dig(summary, "data_window_days")),
        "spend_bracket": to_text(dig(payload, "behavioral_insights", "spend_bracket")),
        "segment_id": to_text(dig(payload, "audience_segment", "segment_id")),
        "cohort_id": to_text(dig(payload, "audience_segment", "cohort_id"))
        or _privacy_cohort(payload),
        "data_quality_score": _quality_score(payload),
    }


def extract_uber_rides_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    summary = dig(payload, "ride_summary")
    return {
        "total_rides": to_int(dig(summary, "total_rides")),
        "total_spend": to_decimal(dig(summary, "total_spend")),
        "total_distance_km": to_decimal(dig(summary, "total_distance_km")),
        "avg_fare": to_decimal(dig(summary, "avg_fare")),
        "is_commuter": to_flag(dig(payload, "temporal_behavior", "is_commuter")),
        "spend_bracket": to_text(dig(payload, "behavioral_insights", "spend_bracket")),
        "segment_id": to_text(dig(payload, "audience_segment", "segment_id")),
        "cohort_id": _privacy_cohort(payload),
        "data_quality_score": _quality_score(payload),
    }


def extract_strava_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    totals = dig(payload, "activity_totals")
    return {
        "total_activities": to_int(dig(totals, "total_activities")),
        "total_distance_km": to_decimal(dig(totals, "total_distance_km")),
        "total_time_hours": to_decimal(dig(totals, "total_time_hours")),
        "fitness_tier": to_text(dig(payload, "fitness_profile", "tier")),
        "primary_activity": to_text(dig(payload, "fitness_profile", "primary_activity")),
        "segment_id": to_text(dig(payload, "audience_segment", "segment_id")),
        "cohort_id": _privacy_cohort(payload),
        "data_quality_score": _quality_score(payload),
    }
