import uuid
from datetime import datetime, date

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.db.base import Base

PHASE_ORDER = ("planning", "self", "peer", "manager", "upward", "calibration", "completed")
PHASES_SQL = ",".join(f"'{p}'" for p in PHASE_ORDER)


def default_review_types() -> dict:
    return {"self": True, "peer": True, "manager": True, "upward": False}


def default_anonymity_settings() -> dict:
    return {"peerReviews": "full", "upwardReviews": "full"}


def default_reminder_settings() -> dict:
    return {"enabled": True, "frequency": 3, "escalateToManager": True, "escalationDelay": 7}


def default_recurrence() -> dict:
    return {"isRecurring": False, "frequency": "annual"}


cycle_participants = Table(
    "cycle_participants",
    Base.metadata,
    Column("cycle_id", Uuid, ForeignKey("review_cycles.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class ReviewCycle(Base):
    __tablename__ = "review_cycles"
    __table_args__ = (
        CheckConstraint(f"status IN ({PHASES_SQL})", name="ck_review_cycles_status"),
        CheckConstraint(
            "cycle_type IN ('quarterly','half-yearly','annual','custom')",
            name="ck_review_cycles_cycle_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Single source of truth for the active phase; current_phase mirrors it.
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="planning")

    cycle_type: Mapped[str] = mapped_column(String(20), nullable=False, default="custom")
    review_types: Mapped[dict] = mapped_column(JSON, nullable=False, default=default_review_types)
    anonymity_settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=default_anonymity_settings)
    reminder_settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=default_reminder_settings)
    recurrence: Mapped[dict] = mapped_column(JSON, nullable=False, default=default_recurrence)

    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_advance_phases: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("review_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Optimistic locking: two concurrent transitions cannot both commit
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    phases = relationship(
        "CyclePhase",
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="CyclePhase.position",
        lazy="selectin",
    )
    participants = relationship("User", secondary=cycle_participants, lazy="selectin")

    @property
    def current_phase(self) -> str:
        return self.status

    def get_phase(self, name: str) -> "CyclePhase | None":
        for phase in self.phases:
            if phase.name == name:
                return phase
        return None


class CyclePhase(Base):
    __tablename__ = "cycle_phases"
    __table_args__ = (
        CheckConstraint(f"name IN ({PHASES_SQL})", name="ck_cycle_phases_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("review_cycles.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reminder_dates: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    cycle = relationship("ReviewCycle", back_populates="phases")
