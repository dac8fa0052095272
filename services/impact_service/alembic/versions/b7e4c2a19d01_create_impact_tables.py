"""create_impact_tables

Revision ID: b7e4c2a19d01
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "b7e4c2a19d01"
down_revision = None
branch_labels = None
depends_on = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32)


URGENCY = ("critical", "high", "medium", "low")


def upgrade() -> None:
    op.create_table(
        "user_points_accounts",
        sa.Column("user_auth_id", sa.String(), nullable=False),
        sa.Column("total_donations", sa.Integer(), nullable=False),
        sa.Column("impact_points", sa.Integer(), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False),
        sa.Column("challenges_completed", sa.Integer(), nullable=False),
        sa.Column("last_donation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "total_donations >= 0",
            name="ck_user_points_accounts_total_donations_non_negative",
        ),
        sa.CheckConstraint(
            "impact_points >= 0",
            name="ck_user_points_accounts_impact_points_non_negative",
        ),
        sa.CheckConstraint(
            "total_points >= 0",
            name="ck_user_points_accounts_total_points_non_negative",
        ),
        sa.CheckConstraint(
            "challenges_completed >= 0",
            name="ck_user_points_accounts_challenges_completed_non_negative",
        ),
        sa.PrimaryKeyConstraint("user_auth_id", name="pk_user_points_accounts"),
    )

    op.create_table(
        "emergency_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requester_auth_id", sa.String(), nullable=True),
        sa.Column("hospital_name", sa.String(), nullable=True),
        sa.Column("blood_type", sa.String(length=8), nullable=False),
        sa.Column("urgency", _enum("urgency_enum", *URGENCY), nullable=False),
        sa.Column("units_needed", sa.Integer(), nullable=False),
        sa.Column("responders_count", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("emergency_status_enum", "open", "fulfilled", "cancelled"),
            nullable=False,
        ),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "units_needed >= 1", name="ck_emergency_requests_units_needed_positive"
        ),
        sa.CheckConstraint(
            "responders_count >= 0",
            name="ck_emergency_requests_responders_non_negative",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_emergency_requests"),
    )

    op.create_table(
        "donation_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_auth_id", sa.String(), nullable=False),
        sa.Column(
            "kind",
            _enum(
                "donation_kind_enum",
                "appointment",
                "drive_registration",
                "emergency_response",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("donation_status_enum", "pending", "completed", "cancelled"),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("related_emergency_id", sa.Uuid(), nullable=True),
        sa.Column("urgency", _enum("urgency_enum", *URGENCY), nullable=True),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("response_time_minutes", sa.Integer(), nullable=True),
        sa.Column("blood_type", sa.String(length=8), nullable=True),
        sa.Column("location_name", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("points_awarded", sa.Integer(), nullable=True),
        sa.Column("points_breakdown", JSON_DOCUMENT, nullable=True),
        sa.Column(
            "fanout_status",
            _enum(
                "fanout_status_enum",
                "pending",
                "applied",
                "retry_scheduled",
                "dead_letter",
            ),
            nullable=True,
        ),
        sa.Column("fanout_attempts", sa.Integer(), nullable=False),
        sa.Column("fanout_next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fanout_error", sa.Text(), nullable=True),
        sa.Column("challenges_applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "distance_km IS NULL OR distance_km >= 0",
            name="ck_donation_events_distance_non_negative",
        ),
        sa.CheckConstraint(
            "response_time_minutes IS NULL OR response_time_minutes >= 0",
            name="ck_donation_events_response_time_non_negative",
        ),
        sa.ForeignKeyConstraint(
            ["related_emergency_id"],
            ["emergency_requests.id"],
            name="fk_donation_events_related_emergency_id_emergency_requests",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_donation_events"),
    )
    op.create_index(
        "ix_donation_events_user_auth_id", "donation_events", ["user_auth_id"]
    )
    op.create_index(
        "ix_donation_events_related_emergency_id",
        "donation_events",
        ["related_emergency_id"],
    )
    op.create_index(
        "ix_donation_events_user_kind_created",
        "donation_events",
        ["user_auth_id", "kind", "created_at"],
    )

    op.create_table(
        "challenges",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "type",
            _enum(
                "challenge_type_enum",
                "streak",
                "community_goal",
                "referral",
                "speed_bonus",
                "distance_bonus",
                "emergency_hero",
            ),
            nullable=False,
        ),
        sa.Column("target", sa.Integer(), nullable=False),
        sa.Column("reward_points", sa.Integer(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            _enum("challenge_status_enum", "upcoming", "active", "completed", "expired"),
            nullable=False,
        ),
        sa.Column("total_participants", sa.Integer(), nullable=False),
        sa.Column("total_completions", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("target > 0", name="ck_challenges_target_positive"),
        sa.CheckConstraint(
            "reward_points >= 0", name="ck_challenges_reward_non_negative"
        ),
        sa.CheckConstraint(
            "total_participants >= 0", name="ck_challenges_participants_non_negative"
        ),
        sa.CheckConstraint(
            "total_completions >= 0 AND total_completions <= total_participants",
            name="ck_challenges_completions_bounded",
        ),
        sa.CheckConstraint("ends_at > starts_at", name="ck_challenges_window_ordered"),
        sa.PrimaryKeyConstraint("id", name="pk_challenges"),
    )
    op.create_index("ix_challenges_type", "challenges", ["type"])
    op.create_index("ix_challenges_status", "challenges", ["status"])

    op.create_table(
        "challenge_participants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("challenge_id", sa.Uuid(), nullable=False),
        sa.Column("user_auth_id", sa.String(), nullable=False),
        sa.Column("current", sa.Integer(), nullable=False),
        sa.Column("started", sa.Boolean(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referred_user_ids", JSON_DOCUMENT, nullable=False),
        sa.CheckConstraint(
            "current >= 0", name="ck_challenge_participants_current_non_negative"
        ),
        sa.ForeignKeyConstraint(
            ["challenge_id"],
            ["challenges.id"],
            name="fk_challenge_participants_challenge_id_challenges",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_challenge_participants"),
        sa.UniqueConstraint(
            "challenge_id", "user_auth_id", name="uq_challenge_participant"
        ),
    )
    op.create_index(
        "ix_challenge_participants_challenge_id",
        "challenge_participants",
        ["challenge_id"],
    )
    op.create_index(
        "ix_challenge_participants_user_auth_id",
        "challenge_participants",
        ["user_auth_id"],
    )

    op.create_table(
        "challenge_contributions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("challenge_id", sa.Uuid(), nullable=False),
        sa.Column("user_auth_id", sa.String(), nullable=False),
        sa.Column("source_key", sa.String(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["challenge_id"],
            ["challenges.id"],
            name="fk_challenge_contributions_challenge_id_challenges",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_challenge_contributions"),
        sa.UniqueConstraint(
            "challenge_id", "source_key", name="uq_challenge_contribution"
        ),
    )
    op.create_index(
        "ix_challenge_contributions_user_auth_id",
        "challenge_contributions",
        ["user_auth_id"],
    )

    op.create_table(
        "reward_vouchers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_auth_id", sa.String(), nullable=False),
        sa.Column("reward_id", sa.String(), nullable=False),
        sa.Column(
            "reward_type",
            _enum(
                "reward_type_enum",
                "coupon",
                "access",
                "feature",
                "physical",
                "multiplier",
                "badge",
                "voucher",
            ),
            nullable=True,
        ),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("voucher_status_enum", "active", "used", "expired"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_for", sa.String(), nullable=True),
        sa.CheckConstraint(
            "points_spent >= 0", name="ck_reward_vouchers_points_spent_non_negative"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reward_vouchers"),
        sa.UniqueConstraint("code", name="uq_reward_vouchers_code"),
        sa.UniqueConstraint(
            "idempotency_key", name="uq_reward_vouchers_idempotency_key"
        ),
    )
    op.create_index("ix_reward_vouchers_user_auth_id", "reward_vouchers", ["user_auth_id"])
    op.create_index("ix_reward_vouchers_reward_id", "reward_vouchers", ["reward_id"])


def downgrade() -> None:
    op.drop_table("reward_vouchers")
    op.drop_table("challenge_contributions")
    op.drop_table("challenge_participants")
    op.drop_table("challenges")
    op.drop_table("donation_events")
    op.drop_table("emergency_requests")
    op.drop_table("user_points_accounts")
