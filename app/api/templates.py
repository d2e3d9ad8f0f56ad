from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.rbac import require_roles
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.review_template import ReviewTemplate
from app.models.user import User
from app.schemas.template import ReviewTemplateCreate, ReviewTemplateOut

router = APIRouter(prefix="/templates", tags=["templates"])


def to_out(t: ReviewTemplate) -> ReviewTemplateOut:
    return ReviewTemplateOut(
        id=str(t.id),
        name=t.name,
        description=t.description,
        is_active=t.is_active,
        created_at=t.created_at,
    )


@router.get("", response_model=list[ReviewTemplateOut])
def list_templates(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(ReviewTemplate)
    if not include_inactive:
        q = q.filter(ReviewTemplate.is_active.is_(True))
    return [to_out(t) for t in q.order_by(ReviewTemplate.name).all()]


@router.post("", response_model=ReviewTemplateOut, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: ReviewTemplateCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    t = ReviewTemplate(name=payload.name, description=payload.description, is_active=True)
    db.add(t)
    db.flush()

    log_event(
        db=db,
        actor=current_user,
        action="TEMPLATE_CREATED",
        entity_type="review_template",
        entity_id=t.id,
        metadata={"name": t.name},
    )

    db.commit()
    return to_out(t)
