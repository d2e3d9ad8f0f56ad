import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.rbac import require_roles
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import UserOut
from app.services.directory import DirectoryUser, SqlDirectory

router = APIRouter(prefix="/users", tags=["users"])


def to_out(u: DirectoryUser) -> UserOut:
    return UserOut(
        id=str(u.id),
        email=u.email,
        full_name=u.full_name,
        role=u.role_name,
        manager_id=str(u.manager_id) if u.manager_id else None,
        department=u.department,
        team=u.team,
        is_active=u.is_active,
    )


@router.get("", response_model=list[UserOut])
def list_users(
    department: str | None = Query(default=None),
    manager_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    directory = SqlDirectory(db)
    if manager_id:
        users = directory.get_direct_reports(manager_id)
    elif department:
        users = directory.find_by_department(department)
    else:
        users = directory.list_users()
    return [to_out(u) for u in users]


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    u = SqlDirectory(db).get_user(user_id)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return to_out(u)


@router.get("/{user_id}/reports", response_model=list[UserOut])
def get_reports(
    user_id: uuid.UUID,
    recursive: bool = Query(default=False, description="Walk the whole reporting tree"),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    directory = SqlDirectory(db)
    if directory.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    users = directory.get_all_reports(user_id) if recursive else directory.get_direct_reports(user_id)
    return [to_out(u) for u in users]
