from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from myrad.db.models.base import Base


class ContributionEnvelope:
    """Columns shared by every per-provider contribution table."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    reclaim_proof_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default=text("'verified'"))
    processing_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sellable_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    opt_out: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


def fingerprint_index_name(table_name: str) -> str:
    return f"uq_{table_name}_active_fingerprint"


def _envelope_indexes(
    table_name: str,
    *fingerprint_columns: str,
    fingerprint_where: str = "opt_out = false",
) -> tuple[Index, ...]:
    # At most one row still visible to the marketplace per fingerprint.
    return (
        Index(f"idx_{table_name}_user_id", "user_id"),
        Index(f"idx_{table_name}_created_at", "created_at"),
        Index(
            fingerprint_index_name(table_name),
            *fingerprint_columns,
            unique=True,
            postgresql_where=text(fingerprint_where),
        ),
    )


class ZomatoContribution(ContributionEnvelope, Base):
    __tablename__ = "zomato_contributions"
    __table_args__ = (
        *_envelope_indexes("zomato_contributions", "total_orders", "total_gmv"),
        Index("idx_zomato_contributions_lifestyle_segment", "lifestyle_segment"),
    )

    total_orders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_gmv: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    avg_order_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    data_window_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frequency_tier: Mapped[str | None] = mapped_column(Text, nullable=True)
    lifestyle_segment: Mapped[str | None] = mapped_column(Text, nullable=True)
    city_cluster: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)


class GithubContribution(ContributionEnvelope, Base):
    __tablename__ = "github_contributions"
    __table_args__ = _envelope_indexes("github_contributions", "username")

    username: Mapped[str | None] = mapped_column(Text, nullable=True)
    follower_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    contribution_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    developer_tier: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)


class NetflixContribution(ContributionEnvelope, Base):
    __tablename__ = "netflix_contributions"
    __table_args__ = _envelope_indexes(
        "netflix_contributions",
        "total_titles_watched",
        fingerprint_where="opt_out = false AND total_titles_watched > 0",
    )

    total_titles_watched: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_watch_hours: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    engagement_tier: Mapped[str | None] = mapped_column(Text, nullable=True)
    segment_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)


class _OrderHistoryColumns:
    total_orders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_spend: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    avg_order_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_window_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    spend_bracket: Mapped[str | None] = mapped_column(Text, nullable=True)
    segment_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


class BlinkitContribution(_OrderHistoryColumns, ContributionEnvelope, Base):
    __tablename__ = "blinkit_contributions"
    __table_args__ = _envelope_indexes("blinkit_contributions", "total_orders", "total_spend")


class UberEatsContribution(_OrderHistoryColumns, ContributionEnvelope, Base):
    __tablename__ = "ubereats_contributions"
    __table_args__ = _envelope_indexes("ubereats_contributions", "total_orders", "total_spend")


class ZeptoContribution(_OrderHistoryColumns, ContributionEnvelope, Base):
    __tablename__ = "zepto_contributions"
    __table_args__ = _envelope_indexes("zepto_contributions", "total_orders", "total_spend")


class UberRidesContribution(ContributionEnvelope, Base):
    __tablename__ = "uber_rides_contributions"
    __table_args__ = _envelope_indexes("uber_rides_contributions", "total_rides", "total_spend")

    total_rides: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_spend: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_distance_km: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    avg_fare: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_commuter: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    spend_bracket: Mapped[str | None] = mapped_column(Text, nullable=True)
    segment_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


class StravaContribution(ContributionEnvelope, Base):
    __tablename__ = "strava_contributions"
    __table_args__ = _envelope_indexes(
        "strava_contributions",
        "total_activities",
        "total_distance_km",
    )

    total_activities: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_distance_km: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_time_hours: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    fitness_tier: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_activity: Mapped[str | None] = mapped_column(Text, nullable=True)
    segment_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    cohort_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


CONTRIBUTION_MODELS: tuple[type[ContributionEnvelope], ...] = (
    ZomatoContribution,
    GithubContribution,
    NetflixContribution,
    BlinkitContribution,
    UberEatsContribution,
    UberRidesContribution,
    StravaContribution,
    ZeptoContribution,
)
