import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.reviews import review_to_out
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.review import Review
from app.models.user import User
from app.schemas.review import ReviewOut
from app.services.directory import to_directory_user

router = APIRouter(tags=["auth"])


@router.get("/me")
def me(
    current_user: User = Depends(get_current_user),
):
    """Current user with normalized role and org links"""
    du = to_directory_user(current_user)
    return {
        "id": str(current_user.id),
        "email": current_user.email,
        "full_name": current_user.full_name,
        "is_admin": current_user.is_admin,
        "is_active": current_user.is_active,
        "role": du.role_name,
        "manager_id": str(du.manager_id) if du.manager_id else None,
        "department": du.department,
    }


@router.get("/me/reviews", response_model=list[ReviewOut])
def my_reviews(
    cycle_id: uuid.UUID | None = Query(default=None, description="Filter by cycle ID"),
    status: str | None = Query(default=None, description="Filter by status"),
    role: str | None = Query(default=None, description="Filter by role: reviewer or reviewee"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Reviews the current user writes or receives. Received reviews hidden from
    the reviewee are left out.
    """
    as_reviewer = Review.reviewer_id == current_user.id
    as_reviewee = (Review.reviewee_id == current_user.id) & Review.visible_to_reviewee.is_(True)

    query = db.query(Review)
    if role == "reviewer":
        query = query.filter(as_reviewer)
    elif role == "reviewee":
        query = query.filter(as_reviewee)
    else:
        query = query.filter(as_reviewer | as_reviewee)

    if cycle_id:
        query = query.filter(Review.cycle_id == cycle_id)
    if status:
        query = query.filter(Review.status == status)

    rows = query.order_by(Review.created_at.desc(), Review.id).offset(offset).limit(limit).all()
    return [review_to_out(r, current_user) for r in rows]
