from typing import Literal

from pydantic import BaseModel, Field

ReviewType = Literal["self", "peer", "manager", "upward"]


class PhaseAssignRequest(BaseModel):
    phase: str
    peer_count: int | None = Field(default=None, ge=1)
    upward_count: int | None = Field(default=None, ge=1)


class BulkAssignRequest(BaseModel):
    types: list[str] = Field(min_length=1)
    user_ids: list[str] | None = None
    peer_count: int | None = Field(default=None, ge=1)
    upward_count: int | None = Field(default=None, ge=1)


class AssignmentResultOut(BaseModel):
    cycle_id: str
    created_count: int
    skipped_count: int
    by_type: dict[str, int] = {}
