from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Phase = Literal["planning", "self", "peer", "manager", "upward", "calibration", "completed"]
Anonymity = Literal["full", "partial", "none"]


class ReviewTypes(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    self_: bool = Field(default=True, alias="self")
    peer: bool = True
    manager: bool = True
    upward: bool = False


class AnonymitySettings(BaseModel):
    peerReviews: Anonymity = "full"
    upwardReviews: Anonymity = "full"


class ReminderSettings(BaseModel):
    enabled: bool = True
    frequency: int = Field(default=3, ge=1, description="Days between reminders")
    escalateToManager: bool = True
    escalationDelay: int = Field(default=7, ge=0)


class Recurrence(BaseModel):
    isRecurring: bool = False
    frequency: Literal["quarterly", "half-yearly", "annual"] = "annual"


class ReviewCycleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    cycle_type: Literal["quarterly", "half-yearly", "annual", "custom"] = "custom"
    review_types: ReviewTypes = Field(default_factory=ReviewTypes)
    anonymity_settings: AnonymitySettings = Field(default_factory=AnonymitySettings)
    reminder_settings: ReminderSettings = Field(default_factory=ReminderSettings)
    recurrence: Recurrence = Field(default_factory=Recurrence)
    require_approval: bool = True
    auto_advance_phases: bool = False
    template_id: str | None = None
    participant_ids: list[str] = Field(default_factory=list)


class ReviewCycleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    review_types: ReviewTypes | None = None
    anonymity_settings: AnonymitySettings | None = None
    reminder_settings: ReminderSettings | None = None
    require_approval: bool | None = None
    auto_advance_phases: bool | None = None
    participant_ids: list[str] | None = None


class PhaseIn(BaseModel):
    name: Phase
    start_date: datetime
    end_date: datetime
    reminder_dates: list[datetime] = Field(default_factory=list)
    instructions: str | None = None

    @model_validator(mode="after")
    def _positive_duration(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class PhasesConfig(BaseModel):
    phases: list[PhaseIn] = Field(min_length=1)


class PhaseOut(BaseModel):
    name: str
    start_date: datetime
    end_date: datetime
    reminder_dates: list[str] = []
    instructions: str | None = None
    is_complete: bool


class ReviewCycleOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    start_date: date | None
    end_date: date | None
    status: str
    current_phase: str
    cycle_type: str
    review_types: dict
    anonymity_settings: dict
    reminder_settings: dict
    recurrence: dict
    require_approval: bool
    auto_advance_phases: bool
    created_by_user_id: str | None = None
    template_id: str | None = None
    participant_ids: list[str] = []
    phases: list[PhaseOut] = []
    version: int
    created_at: datetime
    updated_at: datetime


class TransitionOut(BaseModel):
    cycle: ReviewCycleOut
    previous_phase: str
    reviews_created: int
    reviews_skipped: int
    by_type: dict[str, int] = {}
