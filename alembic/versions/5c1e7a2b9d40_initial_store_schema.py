"""initial_store_schema

Revision ID: 5c1e7a2b9d40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e7a2b9d40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

ORDER_HISTORY_TABLES = ("blinkit_contributions", "ubereats_contributions", "zepto_contributions")


def _envelope_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("reclaim_proof_id", sa.Text(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'verified'")),
        sa.Column("processing_method", sa.String(64), nullable=True),
        sa.Column("sellable_data", postgresql.JSONB(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("wallet_address", sa.Text(), nullable=True),
        sa.Column("opt_out", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _create_contribution_table(
    table_name: str,
    columns: list[sa.Column],
    fingerprint: list[str],
    *,
    fingerprint_where: str = "opt_out = false",
) -> None:
    op.create_table(
        table_name,
        *_envelope_columns(),
        *columns,
        sa.PrimaryKeyConstraint("id", name=f"pk_{table_name}"),
        sa.UniqueConstraint("reclaim_proof_id", name=f"uq_{table_name}_reclaim_proof_id"),
    )
    op.create_index(f"idx_{table_name}_user_id", table_name, ["user_id"])
    op.create_index(f"idx_{table_name}_created_at", table_name, ["created_at"])
    op.create_index(
        f"uq_{table_name}_active_fingerprint",
        table_name,
        fingerprint,
        unique=True,
        postgresql_where=sa.text(fingerprint_where),
    )


def _order_history_columns() -> list[sa.Column]:
    return [
        sa.Column("total_orders", sa.Integer(), nullable=True),
        sa.Column("total_spend", sa.Numeric(14, 2), nullable=True),
        sa.Column("avg_order_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_items", sa.Integer(), nullable=True),
        sa.Column("data_window_days", sa.Integer(), nullable=True),
        sa.Column("spend_bracket", sa.Text(), nullable=True),
        sa.Column("segment_id", sa.Text(), nullable=True),
        sa.Column("cohort_id", sa.Text(), nullable=True),
        sa.Column("data_quality_score", sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("wallet_address", sa.Text(), nullable=True),
        sa.Column("username", sa.Text(), nullable=True),
        sa.Column("streak", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_contribution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("league", sa.String(16), nullable=False, server_default=sa.text("'Bronze'")),
        sa.Column("referred_by", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("streak >= 0", name="ck_users_streak_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
    )
    op.create_index("idx_users_total_points", "users", ["total_points"])
    op.create_index("idx_users_referred_by", "users", ["referred_by"])
    op.create_index("idx_users_wallet_address", "users", ["wallet_address"])
    op.create_index("idx_users_created_at", "users", ["created_at"])
    op.create_index("uq_users_username_lower", "users", [sa.text("lower(username)")], unique=True)

    op.create_table(
        "points_history",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_points_history_user_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_points_history"),
    )
    op.create_index("idx_points_history_user_created", "points_history", ["user_id", "created_at"])
    op.create_index("idx_points_history_user_reason", "points_history", ["user_id", "reason"])
    op.create_index("idx_points_history_created_at", "points_history", ["created_at"])

    op.create_table(
        "referrals",
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("wallet_address", sa.Text(), nullable=True),
        sa.Column("referral_code", sa.String(16), nullable=False),
        sa.Column("successful_ref", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("successful_ref >= 0", name="ck_referrals_successful_ref_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_referrals_user_id_users"),
        sa.PrimaryKeyConstraint("user_id", name="pk_referrals"),
        sa.UniqueConstraint("referral_code", name="uq_referrals_referral_code"),
    )

    _create_contribution_table(
        "zomato_contributions",
        [
            sa.Column("total_orders", sa.Integer(), nullable=True),
            sa.Column("total_gmv", sa.Numeric(14, 2), nullable=True),
            sa.Column("avg_order_value", sa.Numeric(12, 2), nullable=True),
            sa.Column("data_window_days", sa.Integer(), nullable=True),
            sa.Column("frequency_tier", sa.Text(), nullable=True),
            sa.Column("lifestyle_segment", sa.Text(), nullable=True),
            sa.Column("city_cluster", sa.Text(), nullable=True),
            sa.Column("data_quality_score", sa.Integer(), nullable=True),
            sa.Column("cohort_id", sa.Text(), nullable=True),
        ],
        ["total_orders", "total_gmv"],
    )
    op.create_index(
        "idx_zomato_contributions_lifestyle_segment",
        "zomato_contributions",
        ["lifestyle_segment"],
    )

    _create_contribution_table(
        "github_contributions",
        [
            sa.Column("username", sa.Text(), nullable=True),
            sa.Column("follower_count", sa.Integer(), nullable=True),
            sa.Column("contribution_count", sa.Integer(), nullable=True),
            sa.Column("developer_tier", sa.Text(), nullable=True),
            sa.Column("data_quality_score", sa.Integer(), nullable=True),
            sa.Column("cohort_id", sa.Text(), nullable=True),
        ],
        ["username"],
    )

    _create_contribution_table(
        "netflix_contributions",
        [
            sa.Column("total_titles_watched", sa.Integer(), nullable=True),
            sa.Column("total_watch_hours", sa.Numeric(12, 2), nullable=True),
            sa.Column("engagement_tier", sa.Text(), nullable=True),
            sa.Column("segment_id", sa.Text(), nullable=True),
            sa.Column("cohort_id", sa.Text(), nullable=True),
        ],
        ["total_titles_watched"],
        fingerprint_where="opt_out = false AND total_titles_watched > 0",
    )

    for table_name in ORDER_HISTORY_TABLES:
        _create_contribution_table(
            table_name,
            _order_history_columns(),
            ["total_orders", "total_spend"],
        )

    _create_contribution_table(
        "uber_rides_contributions",
        [
            sa.Column("total_rides", sa.Integer(), nullable=True),
            sa.Column("total_spend", sa.Numeric(14, 2), nullable=True),
            sa.Column("total_distance_km", sa.Numeric(12, 2), nullable=True),
            sa.Column("avg_fare", sa.Numeric(12, 2), nullable=True),
            sa.Column("is_commuter", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("spend_bracket", sa.Text(), nullable=True),
            sa.Column("segment_id", sa.Text(), nullable=True),
            sa.Column("cohort_id", sa.Text(), nullable=True),
            sa.Column("data_quality_score", sa.Integer(), nullable=True),
        ],
        ["total_rides", "total_spend"],
    )

    _create_contribution_table(
        "strava_contributions",
        [
            sa.Column("total_activities", sa.Integer(), nullable=True),
            sa.Column("total_distance_km", sa.Numeric(12, 2), nullable=True),
            sa.Column("total_time_hours", sa.Numeric(12, 2), nullable=True),
            sa.Column("fitness_tier", sa.Text(), nullable=True),
            sa.Column("primary_activity", sa.Text(), nullable=True),
            sa.Column("segment_id", sa.Text(), nullable=True),
            sa.Column("cohort_id", sa.Text(), nullable=True),
            sa.Column("data_quality_score", sa.Integer(), nullable=True),
        ],
        ["total_activities", "total_distance_km"],
    )


def downgrade() -> None:
    for table_name in (
        "strava_contributions",
        "uber_rides_contributions",
        *reversed(ORDER_HISTORY_TABLES),
        "netflix_contributions",
        "github_contributions",
        "zomato_contributions",
    ):
        op.drop_table(table_name)
    op.drop_table("referrals")
    op.drop_table("points_history")
    op.drop_table("users")
