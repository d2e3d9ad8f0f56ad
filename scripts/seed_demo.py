from datetime import date, timedelta

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.db.session import SessionLocal
from app.models.rbac import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, Role, UserRole
from app.models.review_cycle import ReviewCycle
from app.models.review_template import ReviewTemplate
from app.models.user import User
from app.services.phases import PhaseSpec, PhaseStateMachine


def get_or_create_role(db: Session, name: str) -> Role:
    r = db.query(Role).filter(Role.name == name).one_or_none()
    if r:
        return r
    r = Role(name=name)
    db.add(r)
    db.commit()
    return r


def get_or_create_user(
    db: Session,
    email: str,
    full_name: str,
    manager: User | None = None,
    department: str | None = None,
    title: str | None = None,
    is_admin_flag: bool = False,
) -> User:
    u = db.query(User).filter(User.email == email).one_or_none()
    if u:
        return u
    u = User(
        email=email,
        full_name=full_name,
        is_active=True,
        is_admin=is_admin_flag,
        manager_id=manager.id if manager else None,
        department=department,
        title=title,
    )
    db.add(u)
    db.commit()
    return u


def ensure_user_role(db: Session, user: User, role: Role) -> None:
    ur = (
        db.query(UserRole)
        .filter(UserRole.user_id == user.id, UserRole.role_id == role.id)
        .one_or_none()
    )
    if not ur:
        db.add(UserRole(user_id=user.id, role_id=role.id))
        db.commit()


def get_or_create_template(db: Session, name: str) -> ReviewTemplate:
    t = db.query(ReviewTemplate).filter(ReviewTemplate.name == name).one_or_none()
    if t:
        return t
    t = ReviewTemplate(name=name, description="Impact, collaboration, growth", is_active=True)
    db.add(t)
    db.commit()
    return t


def get_or_create_cycle(db: Session, name: str, created_by: User, template: ReviewTemplate, participants: list[User]) -> ReviewCycle:
    c = db.query(ReviewCycle).filter(ReviewCycle.name == name).one_or_none()
    if c:
        return c
    today = date.today()
    c = ReviewCycle(
        name=name,
        start_date=today,
        end_date=today + timedelta(days=90),
        status="planning",
        cycle_type="quarterly",
        review_types={"self": True, "peer": True, "manager": True, "upward": True},
        created_by_user_id=created_by.id,
        template_id=template.id,
    )
    c.participants = participants
    db.add(c)
    db.commit()
    return c


def main():
    db = SessionLocal()
    try:
        # ---- Roles ----
        roles = {name: get_or_create_role(db, name) for name in (ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE)}

        # ---- Org chart ----
        admin = get_or_create_user(db, "admin@local.test", "Admin Local", is_admin_flag=True)
        head = get_or_create_user(db, "head@local.test", "Dana Head", department="Engineering", title="VP Engineering")
        lead = get_or_create_user(db, "lead@local.test", "Lee Lead", manager=head, department="Engineering", title="Engineering Manager")
        engineers = [
            get_or_create_user(db, f"eng{i}@local.test", f"Engineer {i}", manager=lead, department="Engineering", title="Engineer")
            for i in range(1, 5)
        ]

        ensure_user_role(db, admin, roles[ROLE_ADMIN])
        for manager in (head, lead):
            ensure_user_role(db, manager, roles[ROLE_MANAGER])
        for u in engineers:
            ensure_user_role(db, u, roles[ROLE_EMPLOYEE])

        # ---- Cycle in planning, with phases ----
        template = get_or_create_template(db, "Engineering ladder")
        cycle = get_or_create_cycle(db, "Demo Cycle", admin, template, [head, lead, *engineers])

        if not cycle.phases:
            start = utcnow()
            names = ("self", "peer", "manager", "upward", "calibration")
            PhaseStateMachine(db, actor=admin).configure_phases(
                cycle.id,
                [
                    PhaseSpec(name, start + timedelta(days=14 * i), start + timedelta(days=14 * (i + 1)))
                    for i, name in enumerate(names)
                ],
            )

        print("\n=== Demo Seed Complete ===")
        print("Users (use as X-User-Email header):")
        print(f"  admin:    {admin.email}")
        print(f"  managers: {head.email}, {lead.email}")
        print(f"  staff:    {', '.join(u.email for u in engineers)}")

        print("\nCycle:")
        print(f"  cycle_id: {cycle.id}")
        print(f"  name:     {cycle.name}")
        print(f"  phase:    {cycle.status}")

        print("\nNext actions:")
        print("  1) (Admin) Start cycle: POST /cycles/{cycle_id}/start")
        print("  2) (Reviewer) Submit: POST /reviews/{review_id}/submit")
        print("  3) (Manager) Approve: POST /reviews/{review_id}/approve")
        print("  4) (Admin) Move on: POST /cycles/{cycle_id}/advance  or  POST /workflow/sweep")
        print()

    finally:
        db.close()


if __name__ == "__main__":
    main()
