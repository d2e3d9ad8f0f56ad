"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PHASES_SQL = "'planning','self','peer','manager','upward','calibration','completed'"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("manager_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("department", sa.String(100), nullable=True),
        sa.Column("team", sa.String(100), nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_manager_id", "users", ["manager_id"])
    op.create_index("ix_users_department", "users", ["department"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
    )
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Uuid(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    op.create_table(
        "review_templates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "review_cycles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("cycle_type", sa.String(20), nullable=False),
        sa.Column("review_types", sa.JSON(), nullable=False),
        sa.Column("anonymity_settings", sa.JSON(), nullable=False),
        sa.Column("reminder_settings", sa.JSON(), nullable=False),
        sa.Column("recurrence", sa.JSON(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=False),
        sa.Column("auto_advance_phases", sa.Boolean(), nullable=False),
        sa.Column(
            "created_by_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "template_id", sa.Uuid(), sa.ForeignKey("review_templates.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(f"status IN ({PHASES_SQL})", name="ck_review_cycles_status"),
        sa.CheckConstraint(
            "cycle_type IN ('quarterly','half-yearly','annual','custom')",
            name="ck_review_cycles_cycle_type",
        ),
    )

    op.create_table(
        "cycle_phases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "cycle_id", sa.Uuid(), sa.ForeignKey("review_cycles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("reminder_dates", sa.JSON(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("is_complete", sa.Boolean(), nullable=False),
        sa.CheckConstraint(f"name IN ({PHASES_SQL})", name="ck_cycle_phases_name"),
    )
    op.create_index("ix_cycle_phases_cycle_id", "cycle_phases", ["cycle_id"])

    op.create_table(
        "cycle_participants",
        sa.Column(
            "cycle_id", sa.Uuid(), sa.ForeignKey("review_cycles.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "cycle_id", sa.Uuid(), sa.ForeignKey("review_cycles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "template_id", sa.Uuid(), sa.ForeignKey("review_templates.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("reviewer_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("reviewee_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("approval_status", sa.String(20), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False),
        sa.Column("visible_to_reviewee", sa.Boolean(), nullable=False),
        sa.Column("summary_feedback", sa.Text(), nullable=True),
        sa.Column("overall_rating", sa.Float(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("calibration_notes", sa.Text(), nullable=True),
        sa.Column("reminder_count", sa.Integer(), nullable=False),
        sa.Column("last_reminder_sent", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint(
            "cycle_id", "reviewer_id", "reviewee_id", "type",
            name="uq_reviews_cycle_reviewer_reviewee_type",
        ),
        sa.CheckConstraint("type IN ('self','peer','manager','upward')", name="ck_reviews_type"),
        sa.CheckConstraint(
            "status IN ('pending','in_progress','submitted','approved','rejected','calibrated')",
            name="ck_reviews_status",
        ),
        sa.CheckConstraint(
            "approval_status IN ('pending','approved','rejected')",
            name="ck_reviews_approval_status",
        ),
        sa.CheckConstraint(
            "(type = 'self' AND reviewer_id = reviewee_id) OR (type <> 'self' AND reviewer_id <> reviewee_id)",
            name="ck_reviews_self_iff_same_person",
        ),
    )
    op.create_index("ix_reviews_cycle_id", "reviews", ["cycle_id"])
    op.create_index("ix_reviews_reviewer_id", "reviews", ["reviewer_id"])
    op.create_index("ix_reviews_reviewee_id", "reviews", ["reviewee_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("event_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("reviews")
    op.drop_table("cycle_participants")
    op.drop_table("cycle_phases")
    op.drop_table("review_cycles")
    op.drop_table("review_templates")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")
