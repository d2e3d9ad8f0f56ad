from __future__ import annotations

from fastapi import HTTPException, Response, status
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import StaleCycleError


def parse_if_match(if_match: str | None) -> int | None:
    """
    Supports:
      If-Match: 3
      If-Match: "3"
    Returns None when the header is absent (the check is optional).
    """
    if if_match is None:
        return None

    raw = if_match.strip()
    if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
        raw = raw[1:-1]

    try:
        v = int(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid If-Match header (expected integer version)",
        )

    if v <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid If-Match header (version must be positive)",
        )
    return v


def set_etag(response: Response, version: int) -> None:
    # Quote it to behave like a real ETag
    response.headers["ETag"] = f'"{version}"'


def flush_cycle(db: Session, cycle) -> None:
    """Flush pending cycle changes; a lost version race becomes StaleCycleError."""
    try:
        db.flush()
    except StaleDataError:
        db.rollback()
        raise StaleCycleError(cycle.id)
