"""Read-only view of the org chart.

The workflow core only ever sees `DirectoryUser`: role normalization (a user
may hold several roles, or be flagged `is_admin`) happens here and nowhere
else.
"""
import uuid
from dataclasses import dataclass
from typing import Iterable, Protocol

from sqlalchemy.orm import Session

from app.models.rbac import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_PRECEDENCE
from app.models.review_cycle import ReviewCycle, cycle_participants
from app.models.user import User


@dataclass(frozen=True)
class DirectoryUser:
    id: uuid.UUID
    email: str
    full_name: str
    role_name: str
    manager_id: uuid.UUID | None = None
    department: str | None = None
    team: str | None = None
    is_active: bool = True


class Directory(Protocol):
    def get_user(self, user_id) -> DirectoryUser | None: ...

    def list_participants(self, cycle: ReviewCycle) -> list[DirectoryUser]: ...

    def list_users(self, user_ids: Iterable | None = None) -> list[DirectoryUser]: ...

    def get_direct_reports(self, manager_id) -> list[DirectoryUser]: ...

    def get_all_reports(self, manager_id) -> list[DirectoryUser]: ...

    def find_by_manager(self, manager_id, exclude: Iterable = ()) -> list[DirectoryUser]: ...

    def find_by_department(self, department: str, exclude: Iterable = ()) -> list[DirectoryUser]: ...


def normalize_role(user: User) -> str:
    held = {r.name for r in user.roles}
    if user.is_admin:
        held.add(ROLE_ADMIN)
    for name in ROLE_PRECEDENCE:
        if name in held:
            return name
    return ROLE_EMPLOYEE


def to_directory_user(user: User) -> DirectoryUser:
    return DirectoryUser(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role_name=normalize_role(user),
        manager_id=user.manager_id,
        department=user.department,
        team=user.team,
        is_active=user.is_active,
    )


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class SqlDirectory:
    """Directory backed by the users table. Results are ordered by id."""

    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return self.db.query(User).filter(User.is_active.is_(True))

    def get_user(self, user_id) -> DirectoryUser | None:
        try:
            uid = _as_uuid(user_id)
        except ValueError:
            return None
        user = self.db.get(User, uid)
        return to_directory_user(user) if user else None

    def list_participants(self, cycle: ReviewCycle) -> list[DirectoryUser]:
        rows = (
            self._active()
            .join(cycle_participants, cycle_participants.c.user_id == User.id)
            .filter(cycle_participants.c.cycle_id == cycle.id)
            .order_by(User.id)
            .all()
        )
        return [to_directory_user(u) for u in rows]

    def list_users(self, user_ids: Iterable | None = None) -> list[DirectoryUser]:
        q = self._active()
        if user_ids is not None:
            q = q.filter(User.id.in_([_as_uuid(i) for i in user_ids]))
        return [to_directory_user(u) for u in q.order_by(User.id).all()]

    def get_direct_reports(self, manager_id) -> list[DirectoryUser]:
        rows = self._active().filter(User.manager_id == _as_uuid(manager_id)).order_by(User.id).all()
        return [to_directory_user(u) for u in rows]

    def get_all_reports(self, manager_id) -> list[DirectoryUser]:
        root = _as_uuid(manager_id)
        seen: set[uuid.UUID] = {root}
        result: list[DirectoryUser] = []
        frontier = [root]
        while frontier:
            rows = self._active().filter(User.manager_id.in_(frontier)).order_by(User.id).all()
            frontier = []
            for u in rows:
                if u.id in seen:
                    continue
                seen.add(u.id)
                result.append(to_directory_user(u))
                frontier.append(u.id)
        return result

    def find_by_manager(self, manager_id, exclude: Iterable = ()) -> list[DirectoryUser]:
        excluded = {_as_uuid(i) for i in exclude}
        return [u for u in self.get_direct_reports(manager_id) if u.id not in excluded]

    def find_by_department(self, department: str, exclude: Iterable = ()) -> list[DirectoryUser]:
        excluded = {_as_uuid(i) for i in exclude}
        rows = self._active().filter(User.department == department).order_by(User.id).all()
        return [to_directory_user(u) for u in rows if u.id not in excluded]
