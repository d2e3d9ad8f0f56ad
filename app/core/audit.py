import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_event import AuditEvent
from app.models.user import User

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def log_event(
    *,
    db: Session,
    actor: User | None,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str,
    metadata: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Stage an audit row in the caller's transaction. The sweep passes
    actor=None; those rows are attributed to the system.
    """
    if not isinstance(entity_id, uuid.UUID):
        entity_id = uuid.UUID(str(entity_id))

    event = AuditEvent(
        actor_user_id=actor.id if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata or None,
    )
    db.add(event)
    logger.debug(
        "audit %s %s/%s by %s",
        action,
        entity_type,
        entity_id,
        actor.email if actor else SYSTEM_ACTOR,
    )
    return event
