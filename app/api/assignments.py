import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.rbac import require_roles
from app.db.session import get_db
from app.models.review import Review
from app.models.user import User
from app.schemas.assignment import AssignmentResultOut, BulkAssignRequest, PhaseAssignRequest
from app.schemas.review import ReviewOut
from app.api.cycles import get_cycle_or_404
from app.api.reviews import review_to_out
from app.services.assignment import AssignmentEngine, AssignmentResult

router = APIRouter(prefix="/cycles/{cycle_id}/assignments", tags=["assignments"])


def to_out(cycle_id: uuid.UUID, r: AssignmentResult) -> AssignmentResultOut:
    return AssignmentResultOut(
        cycle_id=str(cycle_id),
        created_count=r.created_count,
        skipped_count=r.skipped_count,
        by_type=r.by_type,
    )


@router.get("", response_model=list[ReviewOut])
def list_assignments(
    cycle_id: uuid.UUID,
    reviewer_id: uuid.UUID | None = Query(default=None),
    reviewee_id: uuid.UUID | None = Query(default=None),
    review_type: str | None = Query(default=None, alias="type"),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    cycle = get_cycle_or_404(db, cycle_id)

    q = db.query(Review).filter(Review.cycle_id == cycle.id)
    if reviewer_id:
        q = q.filter(Review.reviewer_id == reviewer_id)
    if reviewee_id:
        q = q.filter(Review.reviewee_id == reviewee_id)
    if review_type:
        q = q.filter(Review.type == review_type)
    if status_filter:
        q = q.filter(Review.status == status_filter)

    rows = q.order_by(Review.type, Review.created_at, Review.id).all()
    return [review_to_out(r, current_user) for r in rows]


@router.post("/phase", response_model=AssignmentResultOut)
def assign_for_phase(
    cycle_id: uuid.UUID,
    payload: PhaseAssignRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    """
    Create the reviews a phase needs. Safe to repeat: pairs that already have
    a review are skipped.
    """
    engine = AssignmentEngine(db, actor=current_user)
    result = engine.assign_reviews_for_phase(
        cycle_id,
        payload.phase,
        peer_count=payload.peer_count,
        upward_count=payload.upward_count,
    )
    return to_out(cycle_id, result)


@router.post("/bulk", response_model=AssignmentResultOut, status_code=status.HTTP_201_CREATED)
def bulk_assign(
    cycle_id: uuid.UUID,
    payload: BulkAssignRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    """
    Assign the requested review types over an explicit user list (or every
    active user). The cycle is left in phase 'self' afterwards.
    """
    engine = AssignmentEngine(db, actor=current_user)
    result = engine.bulk_assign(
        cycle_id,
        payload.types,
        user_ids=payload.user_ids,
        peer_count=payload.peer_count,
        upward_count=payload.upward_count,
    )
    return to_out(cycle_id, result)
