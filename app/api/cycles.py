import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.exceptions import InvalidStateError, ValidationError
from app.core.optimistic_lock import parse_if_match, set_etag
from app.core.rbac import require_roles
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.review import Review
from app.models.review_cycle import ReviewCycle
from app.models.review_template import ReviewTemplate
from app.models.user import User
from app.schemas.pagination import PaginatedResponse
from app.schemas.review_cycle import (
    PhaseOut,
    PhasesConfig,
    ReviewCycleCreate,
    ReviewCycleOut,
    ReviewCycleUpdate,
    TransitionOut,
)
from app.schemas.stats import CycleStats
from app.services.phases import INITIAL_PHASE, PhaseSpec, PhaseStateMachine, TransitionResult

router = APIRouter(prefix="/cycles", tags=["review-cycles"])


def to_out(c: ReviewCycle) -> ReviewCycleOut:
    return ReviewCycleOut(
        id=str(c.id),
        name=c.name,
        description=c.description,
        start_date=c.start_date,
        end_date=c.end_date,
        status=c.status,
        current_phase=c.current_phase,
        cycle_type=c.cycle_type,
        review_types=c.review_types or {},
        anonymity_settings=c.anonymity_settings or {},
        reminder_settings=c.reminder_settings or {},
        recurrence=c.recurrence or {},
        require_approval=c.require_approval,
        auto_advance_phases=c.auto_advance_phases,
        created_by_user_id=str(c.created_by_user_id) if c.created_by_user_id else None,
        template_id=str(c.template_id) if c.template_id else None,
        participant_ids=[str(u.id) for u in c.participants],
        phases=[
            PhaseOut(
                name=p.name,
                start_date=p.start_date,
                end_date=p.end_date,
                reminder_dates=p.reminder_dates or [],
                instructions=p.instructions,
                is_complete=p.is_complete,
            )
            for p in c.phases
        ],
        version=c.version,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def transition_out(result: TransitionResult) -> TransitionOut:
    return TransitionOut(
        cycle=to_out(result.cycle),
        previous_phase=result.previous_phase,
        reviews_created=result.assignment.created_count,
        reviews_skipped=result.assignment.skipped_count,
        by_type=result.assignment.by_type,
    )


def get_cycle_or_404(db: Session, cycle_id: uuid.UUID) -> ReviewCycle:
    c = db.get(ReviewCycle, cycle_id)
    if not c:
        raise HTTPException(status_code=404, detail="Cycle not found")
    return c


def _load_participants(db: Session, participant_ids: list[str]) -> list[User]:
    try:
        wanted = [uuid.UUID(i) for i in participant_ids]
    except ValueError:
        raise ValidationError("Invalid participant id", details={"participant_ids": participant_ids})
    users = db.query(User).filter(User.id.in_(wanted)).all() if wanted else []
    missing = sorted({str(i) for i in wanted} - {str(u.id) for u in users})
    if missing:
        raise ValidationError("Unknown participants", details={"missing_user_ids": missing})
    return users


def _get_template(db: Session, template_id: str) -> ReviewTemplate:
    try:
        tid = uuid.UUID(template_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Review template not found or inactive")
    t = db.get(ReviewTemplate, tid)
    if not t or not t.is_active:
        raise HTTPException(status_code=404, detail="Review template not found or inactive")
    return t


@router.get("")
def list_cycles(
    search: str | None = Query(default=None, description="Search by name"),
    phase: str | None = Query(default=None, description="Filter by current phase"),
    limit: int = Query(default=100, ge=1, le=500, description="Maximum number of results"),
    offset: int = Query(default=0, ge=0, description="Number of results to skip"),
    include_pagination: bool = Query(default=False, description="Include pagination metadata"),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """
    List review cycles with optional search and phase filter.

    Use ?include_pagination=true to get pagination metadata.
    """
    query = db.query(ReviewCycle)

    if search:
        query = query.filter(ReviewCycle.name.ilike(f"%{search.lower()}%"))
    if phase:
        query = query.filter(ReviewCycle.status == phase)

    total = query.count()
    cycles = query.order_by(ReviewCycle.created_at.desc()).offset(offset).limit(limit).all()
    items = [to_out(c) for c in cycles]

    if include_pagination:
        return PaginatedResponse.page_of(items, total, limit, offset)
    return items


@router.get("/{cycle_id}", response_model=ReviewCycleOut)
def get_cycle(
    cycle_id: uuid.UUID,
    response: Response,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    c = get_cycle_or_404(db, cycle_id)
    set_etag(response, c.version)
    return to_out(c)


@router.post("", response_model=ReviewCycleOut, status_code=status.HTTP_201_CREATED)
def create_cycle(
    payload: ReviewCycleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    c = ReviewCycle(
        name=payload.name,
        description=payload.description,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=INITIAL_PHASE,
        cycle_type=payload.cycle_type,
        review_types=payload.review_types.model_dump(by_alias=True),
        anonymity_settings=payload.anonymity_settings.model_dump(),
        reminder_settings=payload.reminder_settings.model_dump(),
        recurrence=payload.recurrence.model_dump(),
        require_approval=payload.require_approval,
        auto_advance_phases=payload.auto_advance_phases,
        created_by_user_id=current_user.id,
    )
    if payload.template_id:
        c.template_id = _get_template(db, payload.template_id).id
    c.participants = _load_participants(db, payload.participant_ids)

    db.add(c)
    db.flush()  # ensures c.id exists for audit

    log_event(
        db=db,
        actor=current_user,
        action="CYCLE_CREATED",
        entity_type="review_cycle",
        entity_id=c.id,
        metadata={
            "name": payload.name,
            "cycle_type": payload.cycle_type,
            "review_types": c.review_types,
            "participants": len(c.participants),
        },
    )

    db.commit()
    return to_out(c)


@router.patch("/{cycle_id}", response_model=ReviewCycleOut)
def update_cycle(
    cycle_id: uuid.UUID,
    payload: ReviewCycleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    c = get_cycle_or_404(db, cycle_id)

    if c.status != INITIAL_PHASE:
        raise InvalidStateError(
            "Only cycles in planning can be updated",
            details={"current_phase": c.status},
        )

    changes = payload.model_dump(exclude_unset=True, by_alias=True)
    before = {k: getattr(c, k) for k in changes if k != "participant_ids"}

    for field in ("name", "description", "start_date", "end_date", "require_approval", "auto_advance_phases"):
        if field in changes:
            setattr(c, field, changes[field])
    for field in ("review_types", "anonymity_settings", "reminder_settings"):
        if changes.get(field) is not None:
            # reassign so the JSON column is flagged dirty
            setattr(c, field, {**(getattr(c, field) or {}), **changes[field]})
    if payload.participant_ids is not None:
        c.participants = _load_participants(db, payload.participant_ids)

    log_event(
        db=db,
        actor=current_user,
        action="CYCLE_UPDATED",
        entity_type="review_cycle",
        entity_id=c.id,
        metadata={
            "before": {k: str(v) for k, v in before.items()},
            "after": {k: str(getattr(c, k)) for k in before},
        },
    )

    db.commit()
    return to_out(c)


@router.delete("/{cycle_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cycle(
    cycle_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    c = get_cycle_or_404(db, cycle_id)

    deleted_reviews = (
        db.query(Review).filter(Review.cycle_id == c.id).delete(synchronize_session=False)
    )
    log_event(
        db=db,
        actor=current_user,
        action="CYCLE_DELETED",
        entity_type="review_cycle",
        entity_id=c.id,
        metadata={"name": c.name, "phase": c.status, "deleted_reviews": deleted_reviews},
    )
    db.delete(c)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{cycle_id}/set-template/{template_id}", response_model=ReviewCycleOut)
def set_cycle_template(
    cycle_id: uuid.UUID,
    template_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    c = get_cycle_or_404(db, cycle_id)
    t = _get_template(db, template_id)

    before = {"template_id": str(c.template_id) if c.template_id else None}
    c.template_id = t.id

    log_event(
        db=db,
        actor=current_user,
        action="CYCLE_TEMPLATE_SET",
        entity_type="review_cycle",
        entity_id=c.id,
        metadata={"before": before, "after": {"template_id": str(t.id)}},
    )

    db.commit()
    return to_out(c)


@router.post("/{cycle_id}/phases", response_model=ReviewCycleOut)
def configure_phases(
    cycle_id: uuid.UUID,
    payload: PhasesConfig,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    specs = [
        PhaseSpec(
            name=p.name,
            start_date=p.start_date,
            end_date=p.end_date,
            reminder_dates=p.reminder_dates,
            instructions=p.instructions,
        )
        for p in payload.phases
    ]
    c = PhaseStateMachine(db, actor=current_user).configure_phases(cycle_id, specs)
    return to_out(c)


@router.post("/{cycle_id}/start", response_model=TransitionOut)
def start_cycle(
    cycle_id: uuid.UUID,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
):
    result = PhaseStateMachine(db, actor=current_user).start(cycle_id)
    set_etag(response, result.cycle.version)
    return transition_out(result)


@router.post("/{cycle_id}/advance", response_model=TransitionOut)
def advance_cycle(
    cycle_id: uuid.UUID,
    response: Response,
    if_match: str | None = Header(default=None, alias="If-Match"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    """
    Move the cycle to its next phase and assign the reviews that phase needs.

    Send If-Match with the version from a previous ETag to refuse the move
    when someone else advanced the cycle in between.
    """
    expected = parse_if_match(if_match)
    result = PhaseStateMachine(db, actor=current_user).advance(cycle_id, expected_version=expected)
    set_etag(response, result.cycle.version)
    return transition_out(result)


@router.get("/{cycle_id}/stats", response_model=CycleStats)
def get_cycle_stats(
    cycle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """
    Review counts per status and type, plus submission and approval rates.
    """
    cycle = get_cycle_or_404(db, cycle_id)

    by_status = dict(
        db.query(Review.status, func.count(Review.id))
        .filter(Review.cycle_id == cycle.id)
        .group_by(Review.status)
        .all()
    )
    by_type = dict(
        db.query(Review.type, func.count(Review.id))
        .filter(Review.cycle_id == cycle.id)
        .group_by(Review.type)
        .all()
    )
    total = sum(by_status.values())

    pending_approvals = (
        db.query(func.count(Review.id))
        .filter(
            Review.cycle_id == cycle.id,
            Review.status == "submitted",
            Review.approval_status == "pending",
        )
        .scalar()
    )

    submitted = sum(by_status.get(s, 0) for s in ("submitted", "approved", "rejected", "calibrated"))
    approved = by_status.get("approved", 0)

    return CycleStats(
        cycle_id=str(cycle.id),
        cycle_name=cycle.name,
        current_phase=cycle.status,
        total_reviews=total,
        reviews_by_status=by_status,
        reviews_by_type=by_type,
        pending_approvals=pending_approvals or 0,
        submitted_rate=(submitted / total * 100) if total else 0.0,
        approved_rate=(approved / total * 100) if total else 0.0,
    )
