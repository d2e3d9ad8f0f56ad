import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.access import assert_user_is_reviewer
from app.core.rbac import get_user_role_names, is_admin, require_roles
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.rbac import ROLE_ADMIN, ROLE_MANAGER
from app.models.review import Review
from app.models.user import User
from app.schemas.pagination import PaginatedResponse
from app.schemas.review import ReviewCalibrate, ReviewOut, ReviewReject, ReviewSubmit
from app.services.approval import ApprovalWorkflow
from app.services.calibration import calibrate_review
from app.services.directory import SqlDirectory
from app.services.submission import submit_review

router = APIRouter(prefix="/reviews", tags=["reviews"])


def review_to_out(r: Review, viewer: User | None = None) -> ReviewOut:
    hide_reviewer = (
        r.is_anonymous
        and viewer is not None
        and viewer.id == r.reviewee_id
        and viewer.id != r.reviewer_id
    )
    return ReviewOut(
        id=str(r.id),
        cycle_id=str(r.cycle_id),
        template_id=str(r.template_id) if r.template_id else None,
        reviewer_id=None if hide_reviewer else str(r.reviewer_id),
        reviewee_id=str(r.reviewee_id),
        type=r.type,
        status=r.status,
        approval_status=r.approval_status,
        is_anonymous=r.is_anonymous,
        visible_to_reviewee=r.visible_to_reviewee,
        summary_feedback=r.summary_feedback,
        overall_rating=r.overall_rating,
        submitted_at=r.submitted_at,
        approved_by_id=str(r.approved_by_id) if r.approved_by_id else None,
        approved_at=r.approved_at,
        rejection_reason=r.rejection_reason,
        calibration_notes=r.calibration_notes,
        reminder_count=r.reminder_count,
        last_reminder_sent=r.last_reminder_sent,
        version=r.version,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def get_review_or_404(db: Session, review_id: uuid.UUID) -> Review:
    r = db.get(Review, review_id)
    if not r:
        raise HTTPException(status_code=404, detail="Review not found")
    return r


@router.get("")
def list_reviews(
    cycle_id: uuid.UUID | None = Query(default=None),
    status: str | None = Query(default=None),
    review_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    include_pagination: bool = Query(default=False, description="Include pagination metadata"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    q = db.query(Review)
    if cycle_id:
        q = q.filter(Review.cycle_id == cycle_id)
    if status:
        q = q.filter(Review.status == status)
    if review_type:
        q = q.filter(Review.type == review_type)

    total = q.count()
    rows = q.order_by(Review.created_at.desc(), Review.id).offset(offset).limit(limit).all()
    items = [review_to_out(r, current_user) for r in rows]

    if include_pagination:
        return PaginatedResponse.page_of(items, total, limit, offset)
    return items


@router.get("/pending-approvals", response_model=list[ReviewOut])
def pending_approvals(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    """
    Admins see every review awaiting sign-off; managers see their direct
    reports' reviews.
    """
    workflow = ApprovalWorkflow(db, actor=current_user)
    rows = workflow.list_pending_approvals(current_user.id, is_admin=is_admin(db, current_user))
    return [review_to_out(r, current_user) for r in rows]


@router.get("/reports/{user_id}", response_model=list[ReviewOut])
def reports_reviews(
    user_id: uuid.UUID,
    cycle_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    """Reviews about everyone in a manager's reporting tree."""
    if user_id != current_user.id and not is_admin(db, current_user):
        raise HTTPException(status_code=403, detail="Managers can only view their own reporting tree")

    report_ids = [u.id for u in SqlDirectory(db).get_all_reports(user_id)]
    if not report_ids:
        return []

    q = db.query(Review).filter(Review.reviewee_id.in_(report_ids))
    if cycle_id:
        q = q.filter(Review.cycle_id == cycle_id)
    rows = q.order_by(Review.created_at.desc(), Review.id).all()
    return [review_to_out(r, current_user) for r in rows]


@router.get("/{review_id}", response_model=ReviewOut)
def get_review(
    review_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    r = get_review_or_404(db, review_id)

    if current_user.id == r.reviewer_id:
        return review_to_out(r, current_user)
    if current_user.id == r.reviewee_id and r.visible_to_reviewee:
        return review_to_out(r, current_user)
    if get_user_role_names(db, current_user) & {ROLE_ADMIN, ROLE_MANAGER}:
        return review_to_out(r, current_user)
    raise HTTPException(status_code=403, detail="Not allowed to view this review")


@router.post("/{review_id}/submit", response_model=ReviewOut)
def submit(
    review_id: uuid.UUID,
    payload: ReviewSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    r = get_review_or_404(db, review_id)
    assert_user_is_reviewer(current_user, r)
    r = submit_review(
        db,
        r,
        current_user,
        summary_feedback=payload.summary_feedback,
        overall_rating=payload.overall_rating,
    )
    return review_to_out(r, current_user)


@router.post("/{review_id}/approve", response_model=ReviewOut)
def approve(
    review_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    r = ApprovalWorkflow(db, actor=current_user).approve(review_id, current_user.id)
    return review_to_out(r, current_user)


@router.post("/{review_id}/reject", response_model=ReviewOut)
def reject(
    review_id: uuid.UUID,
    payload: ReviewReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    r = ApprovalWorkflow(db, actor=current_user).reject(review_id, current_user.id, payload.reason)
    return review_to_out(r, current_user)


@router.post("/{review_id}/calibrate", response_model=ReviewOut)
def calibrate(
    review_id: uuid.UUID,
    payload: ReviewCalibrate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    r = get_review_or_404(db, review_id)
    r = calibrate_review(
        db,
        r,
        current_user,
        overall_rating=payload.overall_rating,
        calibration_notes=payload.calibration_notes,
    )
    return review_to_out(r, current_user)
