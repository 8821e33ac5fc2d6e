"""Initial schema — users, matches, reputation, privacy and notifications.

Revision ID: 001_initial
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _user_fk(name: str = "user_id", nullable: bool = False, index: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=nullable,
        index=index,
    )


def _match_fk(nullable: bool = True) -> sa.Column:
    return sa.Column(
        "match_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("matches.id", ondelete="SET NULL"),
        nullable=nullable,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    # ── 2. player_profiles ──────────────────────────────────────────
    op.create_table(
        "player_profiles",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("ntrp_level", sa.Float, nullable=True, comment="1.0 - 7.0"),
        sa.Column("playing_style", sa.String, nullable=True),
        sa.Column("playing_frequency", sa.String, nullable=True),
        sa.Column("play_types", postgresql.JSONB, nullable=True),
        sa.Column("preferred_times", postgresql.JSONB, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("location_privacy", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("gender", sa.String, nullable=True),
        sa.Column("birth_date", sa.Date, nullable=True),
        sa.Column("max_travel_distance_km", sa.Integer, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 3. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        _uuid_pk(),
        sa.Column("type", sa.String, nullable=False),
        sa.Column("status", sa.String, server_default="pending", nullable=False),
        sa.Column("court_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        _created_at(),
    )

    # ── 4. match_participants ───────────────────────────────────────
    op.create_table(
        "match_participants",
        sa.Column(
            "match_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.String, nullable=False),
        sa.Column("status", sa.String, nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 5. match_results ────────────────────────────────────────────
    op.create_table(
        "match_results",
        _uuid_pk(),
        sa.Column(
            "match_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("winner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("loser_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("score", sa.String, nullable=False),
        sa.Column("recorded_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_confirmed", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column(
            "confirmed_by",
            postgresql.JSONB,
            nullable=False,
            comment="User ID strings",
        ),
        _created_at(),
    )

    # ── 6. chat_rooms / chat_participants ───────────────────────────
    op.create_table(
        "chat_rooms",
        _uuid_pk(),
        sa.Column(
            "match_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("type", sa.String, server_default="match", nullable=False),
        _created_at(),
    )
    op.create_table(
        "chat_participants",
        sa.Column(
            "chat_room_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chat_rooms.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 7. card_interactions / card_pairs ───────────────────────────
    op.create_table(
        "card_interactions",
        _uuid_pk(),
        _user_fk("actor_id"),
        _user_fk("target_id"),
        sa.Column("action", sa.String, nullable=False),
        sa.Column("is_match", sa.Boolean, server_default=sa.false(), nullable=False),
        _match_fk(),
        _created_at(),
        sa.UniqueConstraint("actor_id", "target_id", name="uq_card_interaction_pair"),
    )
    op.create_table(
        "card_pairs",
        sa.Column("pair_key", sa.String, primary_key=True),
        _user_fk("user_low_id"),
        _user_fk("user_high_id"),
        _match_fk(),
        _created_at(),
    )

    # ── 8. reputation ───────────────────────────────────────────────
    op.create_table(
        "reputation_scores",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("attendance_rate", sa.Float, nullable=False),
        sa.Column("punctuality_score", sa.Float, nullable=False),
        sa.Column("skill_accuracy", sa.Float, nullable=False),
        sa.Column("behavior_rating", sa.Float, nullable=False),
        sa.Column("total_matches", sa.Integer, nullable=False),
        sa.Column("completed_matches", sa.Integer, nullable=False),
        sa.Column("cancelled_matches", sa.Integer, nullable=False),
        sa.Column("overall_score", sa.Float, nullable=False, index=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "punctuality_records",
        _uuid_pk(),
        _user_fk(index=True),
        _match_fk(),
        sa.Column("is_on_time", sa.Boolean, nullable=False),
        sa.Column("delay_minutes", sa.Integer, nullable=False),
        _created_at(),
    )
    op.create_table(
        "skill_accuracy_records",
        _uuid_pk(),
        _user_fk(index=True),
        _match_fk(),
        sa.Column("reported_level", sa.Float, nullable=False),
        sa.Column("observed_level", sa.Float, nullable=False),
        sa.Column("accuracy", sa.Float, nullable=False),
        _created_at(),
    )
    op.create_table(
        "behavior_reviews",
        _uuid_pk(),
        _user_fk(index=True),
        _user_fk("reviewer_id"),
        _match_fk(),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("tags", postgresql.JSONB, nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "reviewer_id", "user_id", "match_id", name="uq_behavior_review_per_match"
        ),
    )
    op.create_table(
        "skill_level_records",
        _uuid_pk(),
        _user_fk(index=True),
        sa.Column("old_level", sa.Float, nullable=True),
        sa.Column("new_level", sa.Float, nullable=False),
        sa.Column("reason", sa.String, nullable=False),
        sa.Column("note", sa.Text, nullable=True),
        _match_fk(),
        _created_at(),
    )

    # ── 9. user_privacy_settings ────────────────────────────────────
    op.create_table(
        "user_privacy_settings",
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("show_reputation_score", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("show_match_history", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("show_win_loss_record", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("show_skill_progression", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("show_behavior_reviews", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("show_detailed_stats", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("allow_statistics_sharing", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # ── 10. match_notifications ─────────────────────────────────────
    op.create_table(
        "match_notifications",
        _uuid_pk(),
        _user_fk(index=True),
        sa.Column("type", sa.String, nullable=False),
        sa.Column("title", sa.String, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=True),
        sa.Column("is_read", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_match_notifications_user_unread",
        "match_notifications",
        ["user_id", "is_read"],
    )


def downgrade() -> None:
    op.drop_index("ix_match_notifications_user_unread", table_name="match_notifications")
    for table in (
        "match_notifications",
        "user_privacy_settings",
        "skill_level_records",
        "behavior_reviews",
        "skill_accuracy_records",
        "punctuality_records",
        "reputation_scores",
        "card_pairs",
        "card_interactions",
        "chat_participants",
        "chat_rooms",
        "match_results",
        "match_participants",
        "matches",
        "player_profiles",
        "users",
    ):
        op.drop_table(table)
