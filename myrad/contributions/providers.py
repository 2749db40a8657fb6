from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.orm import InstrumentedAttribute

from myrad.contributions.errors import UnknownProviderError
from myrad.contributions.extraction import (
    extract_github_fields,
    extract_netflix_fields,
    extract_order_history_fields,
    extract_strava_fields,
    extract_uber_rides_fields,
    extract_zomato_fields,
)
from myrad.db.models.contributions import (
    BlinkitContribution,
    ContributionEnvelope,
    GithubContribution,
    NetflixContribution,
    StravaContribution,
    UberEatsContribution,
    UberRidesContribution,
    ZeptoContribution,
    ZomatoContribution,
)


class ProviderType(str, Enum):
    ZOMATO = "zomato_order_history"
    GITHUB = "github_profile"
    NETFLIX = "netflix_watch_history"
    BLINKIT = "blinkit_order_history"
    UBEREATS = "ubereats_order_history"
    UBER_RIDES = "uber_ride_history"
    STRAVA = "strava_fitness"
    ZEPTO = "zepto_order_history"


class DuplicatePolicy(str, Enum):
    # A fingerprint match is accepted only when the primary count is strictly greater.
    MERGE_IF_MORE_COMPLETE = "merge_if_more_complete"
    ALWAYS_REJECT = "always_reject"


Fingerprint = tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    provider_type: ProviderType
    label: str
    model: type[ContributionEnvelope]
    extract: Callable[[Mapping[str, Any]], dict[str, Any]]
    fingerprint_fields: tuple[str, ...]
    duplicate_policy: DuplicatePolicy
    duplicate_message: str
    completeness_field: str | None = None
    reactivates_opted_out: bool = False
    fingerprint_requires_positive: bool = False
    count_field: str | None = None
    spend_field: str | None = None
    segment_field: str | None = None

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def column(self, name: str) -> InstrumentedAttribute[Any]:
        return getattr(self.model, name)

    def indexed_field_names(self) -> tuple[str, ...]:
        return tuple(self.extract({}).keys())

    def fingerprint(self, fields: Mapping[str, Any]) -> Fingerprint | None:
        """Returns the duplicate-detection key, or None when the check must be skipped."""
        values = tuple(fields.get(name) for name in self.fingerprint_fields)
        if any(value is None for value in values):
            return None
        if self.fingerprint_requires_positive and not all(value > 0 for value in values):
            return None
        return values

    def completeness(self, source: Mapping[str, Any] | object) -> Any:
        if self.completeness_field is None:
            return 0
        if isinstance(source, Mapping):
            value = source.get(self.completeness_field)
        else:
            value = getattr(source, self.completeness_field, None)
        return 0 if value is None else value

    def accepts_as_merge(self, new_fields: Mapping[str, Any], existing_row: object) -> bool:
        if self.duplicate_policy is not DuplicatePolicy.MERGE_IF_MORE_COMPLETE:
            return False
        return self.completeness(new_fields) > self.completeness(existing_row)


def _order_history_spec(
    provider_type: ProviderType,
    *,
    label: str,
    model: type[ContributionEnvelope],
    reactivates_opted_out: bool = False,
) -> ProviderSpec:
    return ProviderSpec(
        provider_type=provider_type,
        label=label,
        model=model,
        extract=extract_order_history_fields,
        fingerprint_fields=("total_orders", "total_spend"),
        duplicate_policy=DuplicatePolicy.MERGE_IF_MORE_COMPLETE,
        duplicate_message=f"This {label} data has already been submitted.",
        completeness_field="total_orders",
        reactivates_opted_out=reactivates_opted_out,
        count_field="total_orders",
        spend_field="total_spend",
        segment_field="spend_bracket",
    )


PROVIDER_SPECS: dict[ProviderType, ProviderSpec] = {
    ProviderType.ZOMATO: ProviderSpec(
        provider_type=ProviderType.ZOMATO,
        label="Zomato",
        model=ZomatoContribution,
        extract=extract_zomato_fields,
        fingerprint_fields=("total_orders", "total_gmv"),
        duplicate_policy=DuplicatePolicy.MERGE_IF_MORE_COMPLETE,
        duplicate_message="This Zomato data has already been submitted.",
        completeness_field="total_orders",
        count_field="total_orders",
        spend_field="total_gmv",
        segment_field="lifestyle_segment",
    ),
    ProviderType.GITHUB: ProviderSpec(
        provider_type=ProviderType.GITHUB,
        label="GitHub",
        model=GithubContribution,
        extract=extract_github_fields,
        fingerprint_fields=("username",),
        duplicate_policy=DuplicatePolicy.ALWAYS_REJECT,
        duplicate_message="This GitHub profile has already been submitted.",
        count_field="contribution_count",
        segment_field="developer_tier",
    ),
    ProviderType.NETFLIX: ProviderSpec(
        provider_type=ProviderType.NETFLIX,
        label="Netflix",
        model=NetflixContribution,
        extract=extract_netflix_fields,
        fingerprint_fields=("total_titles_watched",),
        duplicate_policy=DuplicatePolicy.ALWAYS_REJECT,
        duplicate_message="This Netflix watch history has already been submitted.",
        fingerprint_requires_positive=True,
        count_field="total_titles_watched",
        segment_field="engagement_tier",
    ),
    ProviderType.BLINKIT: _order_history_spec(
        ProviderType.BLINKIT,
        label="Blinkit",
        model=BlinkitContribution,
    ),
    ProviderType.UBEREATS: _order_history_spec(
        ProviderType.UBEREATS,
        label="Uber Eats",
        model=UberEatsContribution,
    ),
    ProviderType.UBER_RIDES: ProviderSpec(
        provider_type=ProviderType.UBER_RIDES,
        label="Uber Rides",
        model=UberRidesContribution,
        extract=extract_uber_rides_fields,
        fingerprint_fields=("total_rides", "total_spend"),
        duplicate_policy=DuplicatePolicy.MERGE_IF_MORE_COMPLETE,
        duplicate_message="This Uber Rides data has already been submitted.",
        completeness_field="total_rides",
        count_field="total_rides",
        spend_field="total_spend",
        segment_field="spend_bracket",
    ),
    ProviderType.STRAVA: ProviderSpec(
        provider_type=ProviderType.STRAVA,
        label="Strava",
        model=StravaContribution,
        extract=extract_strava_fields,
        fingerprint_fields=("total_activities", "total_distance_km"),
        duplicate_policy=DuplicatePolicy.MERGE_IF_MORE_COMPLETE,
        duplicate_message="This Strava data has already been submitted.",
        completeness_field="total_activities",
        count_field="total_activities",
        spend_field=None,
        segment_field="fitness_tier",
    ),
    ProviderType.ZEPTO: _order_history_spec(
        ProviderType.ZEPTO,
        label="Zepto",
        model=ZeptoContribution,
        reactivates_opted_out=True,
    ),
}


def parse_provider_type(raw: str | ProviderType) -> ProviderType:
    if isinstance(raw, ProviderType):
        return raw
    try:
        return ProviderType(raw)
    except ValueError as exc:
        raise UnknownProviderError(f"unknown provider type: {raw!r}") from exc


def get_provider_spec(provider_type: str | ProviderType) -> ProviderSpec:
    return PROVIDER_SPECS[parse_provider_type(provider_type)]


def iter_provider_specs() -> tuple[ProviderSpec, ...]:
    return tuple(PROVIDER_SPECS.values())
