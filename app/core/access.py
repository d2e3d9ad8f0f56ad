from fastapi import HTTPException

from app.models.review import Review
from app.models.user import User


def assert_user_is_reviewer(user: User, review: Review):
    if user.id != review.reviewer_id:
        raise HTTPException(status_code=403, detail="Only the assigned reviewer can perform this action")
