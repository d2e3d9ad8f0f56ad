from app.models.audit_event import AuditEvent
from app.models.rbac import Role, UserRole
from app.models.review import Review
from app.models.review_cycle import CyclePhase, ReviewCycle, cycle_participants
from app.models.review_template import ReviewTemplate
from app.models.user import User

__all__ = [ "AuditEvent", "Role", "UserRole", "Review",
           "CyclePhase", "ReviewCycle", "cycle_participants",
           "ReviewTemplate", "User" ]
