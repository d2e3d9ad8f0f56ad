"""Reviewer-side submission of a review, including resubmission after rejection."""
import logging

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.audit import log_event
from app.core.clock import utcnow
from app.core.exceptions import InvalidStateError, NotFoundError
from app.models.review import Review
from app.models.review_cycle import PHASE_ORDER, ReviewCycle
from app.models.user import User
from app.services.phases import INITIAL_PHASE, TERMINAL_PHASE

logger = logging.getLogger(__name__)

SUBMITTABLE_STATUSES = ("pending", "in_progress", "rejected")


def submission_open(review_type: str, cycle_phase: str) -> bool:
    """
    Self reviews only while the cycle sits in 'self'; the other types open at
    their own phase and stay open until the cycle completes.
    """
    if cycle_phase in (INITIAL_PHASE, TERMINAL_PHASE):
        return False
    if review_type == "self":
        return cycle_phase == "self"
    return PHASE_ORDER.index(cycle_phase) >= PHASE_ORDER.index(review_type)


def submit_review(
    db: Session,
    review: Review,
    actor: User,
    summary_feedback: str | None = None,
    overall_rating: float | None = None,
) -> Review:
    cycle = db.get(ReviewCycle, review.cycle_id)
    if cycle is None:
        raise NotFoundError("Review cycle", review.cycle_id)

    if review.status not in SUBMITTABLE_STATUSES:
        raise InvalidStateError(
            f"Review cannot be submitted from status {review.status}",
            details={"status": review.status, "allowed": list(SUBMITTABLE_STATUSES)},
        )
    if not submission_open(review.type, cycle.status):
        raise InvalidStateError(
            f"{review.type} reviews cannot be submitted during phase {cycle.status}",
            error_code="PHASE_CLOSED",
            details={"current_phase": cycle.status, "type": review.type},
        )

    prev = review.status
    if summary_feedback is not None:
        review.summary_feedback = summary_feedback
    if overall_rating is not None:
        review.overall_rating = overall_rating
    review.status = "submitted"
    review.approval_status = "pending"
    review.submitted_at = utcnow()
    review.rejection_reason = None

    log_event(
        db=db,
        actor=actor,
        action="REVIEW_RESUBMITTED" if prev == "rejected" else "REVIEW_SUBMITTED",
        entity_type="review",
        entity_id=review.id,
        metadata={"from": prev, "to": review.status, "cycle_id": str(cycle.id)},
    )
    try:
        db.flush()
    except StaleDataError:
        db.rollback()
        raise InvalidStateError(
            "Review was modified concurrently",
            error_code="STALE_VERSION",
            details={"review_id": str(review.id)},
        )
    db.commit()
    logger.info("Review %s submitted by %s", review.id, actor.id)
    return review
