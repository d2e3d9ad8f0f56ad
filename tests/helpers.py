import random
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.rbac import Role, UserRole
from app.models.review import Review
from app.models.review_cycle import CyclePhase, PHASE_ORDER, ReviewCycle
from app.models.review_template import ReviewTemplate
from app.models.user import User


def ensure_role(db: Session, name: str) -> Role:
    r = db.query(Role).filter(Role.name == name).one_or_none()
    if r:
        return r
    r = Role(name=name)
    db.add(r)
    db.commit()
    return r


def create_user(
    db: Session,
    email: str,
    full_name: str | None = None,
    manager: User | None = None,
    department: str | None = None,
    roles: tuple[str, ...] = (),
    is_admin: bool = False,
    is_active: bool = True,
) -> User:
    u = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        is_active=is_active,
        is_admin=is_admin,
        manager_id=manager.id if manager else None,
        department=department,
    )
    db.add(u)
    db.commit()
    for name in roles:
        grant_role(db, u, name)
    return u


def grant_role(db: Session, user: User, role_name: str) -> None:
    role = ensure_role(db, role_name)
    exists = db.query(UserRole).filter(UserRole.user_id == user.id, UserRole.role_id == role.id).one_or_none()
    if not exists:
        db.add(UserRole(user_id=user.id, role_id=role.id))
        db.commit()
    # roles is a view-only collection; reload it
    db.expire(user, ["roles"])


def create_template(db: Session, name: str = "Standard review") -> ReviewTemplate:
    t = ReviewTemplate(name=name, description="Default competencies", is_active=True)
    db.add(t)
    db.commit()
    return t


def create_cycle(
    db: Session,
    participants: list[User] = (),
    template: ReviewTemplate | None = None,
    review_types: dict | None = None,
    status: str = "planning",
    auto_advance: bool = False,
    reminder_settings: dict | None = None,
    anonymity_settings: dict | None = None,
    name: str = "H2 Reviews",
) -> ReviewCycle:
    c = ReviewCycle(
        name=name,
        status=status,
        template_id=template.id if template else None,
        auto_advance_phases=auto_advance,
    )
    if review_types is not None:
        c.review_types = review_types
    if reminder_settings is not None:
        c.reminder_settings = reminder_settings
    if anonymity_settings is not None:
        c.anonymity_settings = anonymity_settings
    c.participants = list(participants)
    db.add(c)
    db.commit()
    return c


def add_phases(
    db: Session,
    cycle: ReviewCycle,
    names: tuple[str, ...] = PHASE_ORDER[1:-1],
    start: datetime | None = None,
    days: int = 14,
) -> ReviewCycle:
    """Back-to-back phases of `days` each, starting at `start`."""
    start = start or utcnow() - timedelta(days=1)
    phases = []
    for i, name in enumerate(names):
        begin = start + timedelta(days=i * days)
        phases.append(
            CyclePhase(
                name=name,
                position=PHASE_ORDER.index(name),
                start_date=begin,
                end_date=begin + timedelta(days=days),
            )
        )
    cycle.phases = phases
    db.commit()
    return cycle


def create_review(
    db: Session,
    cycle: ReviewCycle,
    reviewer: User,
    reviewee: User,
    review_type: str = "peer",
    status: str = "pending",
    approval_status: str = "pending",
    **fields,
) -> Review:
    r = Review(
        cycle_id=cycle.id,
        template_id=cycle.template_id,
        reviewer_id=reviewer.id,
        reviewee_id=reviewee.id,
        type=review_type,
        status=status,
        approval_status=approval_status,
        **fields,
    )
    db.add(r)
    db.commit()
    return r


def seed_org(db: Session, department: str = "Engineering"):
    """
    admin (ADMIN)
    boss (MANAGER) -> alice, bob, carol (EMPLOYEE)
    """
    admin = create_user(db, "admin@local.test", roles=("ADMIN",))
    boss = create_user(db, "boss@local.test", department=department, roles=("MANAGER",))
    reports = [
        create_user(db, f"{n}@local.test", manager=boss, department=department, roles=("EMPLOYEE",))
        for n in ("alice", "bob", "carol")
    ]
    return admin, boss, reports


def seeded_rng(seed: int = 7) -> random.Random:
    return random.Random(seed)


def headers(user: User) -> dict[str, str]:
    return {"X-User-Email": user.email}


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.reminders: list[tuple] = []
        self.escalations: list[tuple] = []

    def send_reminder(self, review, reviewer):
        self.reminders.append((review.id, reviewer.id if reviewer else None))
        if self.fail:
            raise RuntimeError("mail server down")

    def send_escalation(self, manager, review):
        self.escalations.append((manager.id, review.id))
        if self.fail:
            raise RuntimeError("mail server down")
