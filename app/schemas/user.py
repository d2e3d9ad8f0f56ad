from pydantic import BaseModel


class UserOut(BaseModel):
    id: str
    email: str
    full_name: str
    role: str
    manager_id: str | None = None
    department: str | None = None
    team: str | None = None
    is_active: bool
