import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """
    Dev auth: the X-User-Email header names the acting user, e.g.
    X-User-Email: admin@local.test. Matching ignores case and surrounding
    whitespace; deactivated users are refused like unknown ones.
    """
    email = (x_user_email or "").strip()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Email header (dev auth)",
        )

    user = db.query(User).filter(func.lower(User.email) == email.lower()).one_or_none()
    if not user or not user.is_active:
        logger.info("Rejected dev auth for %s", email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user")
    return user
