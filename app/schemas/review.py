from datetime import datetime

from pydantic import BaseModel, Field


class ReviewOut(BaseModel):
    id: str
    cycle_id: str
    template_id: str | None = None
    reviewer_id: str | None  # hidden for anonymous reviews shown to the reviewee
    reviewee_id: str
    type: str
    status: str
    approval_status: str
    is_anonymous: bool
    visible_to_reviewee: bool
    summary_feedback: str | None = None
    overall_rating: float | None = None
    submitted_at: datetime | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    calibration_notes: str | None = None
    reminder_count: int
    last_reminder_sent: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class ReviewSubmit(BaseModel):
    summary_feedback: str | None = None
    overall_rating: float | None = Field(default=None, ge=1, le=5)


class ReviewReject(BaseModel):
    # Blank reasons are refused by the workflow, not here, so the error shape is uniform
    reason: str | None = None


class ReviewCalibrate(BaseModel):
    overall_rating: float | None = Field(default=None, ge=1, le=5)
    calibration_notes: str | None = None
