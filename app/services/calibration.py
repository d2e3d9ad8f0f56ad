"""Manager/admin calibration of submitted reviews while the cycle is in 'calibration'."""
import logging

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.audit import log_event
from app.core.exceptions import InvalidStateError, NotFoundError
from app.models.review import Review
from app.models.review_cycle import ReviewCycle
from app.models.user import User

logger = logging.getLogger(__name__)

CALIBRATION_PHASE = "calibration"


def calibrate_review(
    db: Session,
    review: Review,
    actor: User,
    overall_rating: float | None = None,
    calibration_notes: str | None = None,
) -> Review:
    if review.status != "submitted":
        raise InvalidStateError(
            f"Only submitted reviews can be calibrated. Current status: {review.status}",
            details={"status": review.status},
        )

    cycle = db.get(ReviewCycle, review.cycle_id)
    if cycle is None:
        raise NotFoundError("Review cycle", review.cycle_id)
    if cycle.status != CALIBRATION_PHASE:
        raise InvalidStateError(
            "Calibration is only available during the calibration phase",
            error_code="PHASE_CLOSED",
            details={"current_phase": cycle.status, "required_phase": CALIBRATION_PHASE},
        )

    before = review.overall_rating
    if overall_rating is not None:
        review.overall_rating = overall_rating
    if calibration_notes:
        review.calibration_notes = calibration_notes
    review.status = "calibrated"

    log_event(
        db=db,
        actor=actor,
        action="REVIEW_CALIBRATED",
        entity_type="review",
        entity_id=review.id,
        metadata={
            "from": "submitted",
            "to": review.status,
            "cycle_id": str(cycle.id),
            "rating_before": before,
            "rating_after": review.overall_rating,
        },
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
    logger.info("Review %s calibrated by %s", review.id, actor.id)
    return review
