import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.base import Base

REVIEW_TYPES = ("self", "peer", "manager", "upward")
REVIEW_STATUSES = ("pending", "in_progress", "submitted", "approved", "rejected", "calibrated")
APPROVAL_STATUSES = ("pending", "approved", "rejected")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "reviewer_id", "reviewee_id", "type",
            name="uq_reviews_cycle_reviewer_reviewee_type",
        ),
        CheckConstraint("type IN ('self','peer','manager','upward')", name="ck_reviews_type"),
        CheckConstraint(
            "status IN ('pending','in_progress','submitted','approved','rejected','calibrated')",
            name="ck_reviews_status",
        ),
        CheckConstraint(
            "approval_status IN ('pending','approved','rejected')",
            name="ck_reviews_approval_status",
        ),
        # reviewer == reviewee iff self review
        CheckConstraint(
            "(type = 'self' AND reviewer_id = reviewee_id) OR (type <> 'self' AND reviewer_id <> reviewee_id)",
            name="ck_reviews_self_iff_same_person",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("review_cycles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("review_templates.id", ondelete="SET NULL"), nullable=True
    )

    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reviewee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    approval_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    visible_to_reviewee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    summary_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    overall_rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    calibration_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_sent: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Optimistic locking
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}
