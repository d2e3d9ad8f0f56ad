from datetime import datetime

from pydantic import BaseModel, Field


class ReviewTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)


class ReviewTemplateOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    is_active: bool
    created_at: datetime
