import logging
from typing import Protocol

from app.models.review import Review
from app.services.directory import DirectoryUser

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Fire-and-forget delivery. Callers log and swallow whatever this raises."""

    def send_reminder(self, review: Review, reviewer: DirectoryUser | None) -> None: ...

    def send_escalation(self, manager: DirectoryUser, review: Review) -> None: ...


class LoggingNotifier:
    """Default notifier: records the dispatch in the application log."""

    def send_reminder(self, review: Review, reviewer: DirectoryUser | None) -> None:
        logger.info(
            "Reminder for review %s sent to %s",
            review.id,
            reviewer.email if reviewer else review.reviewer_id,
            extra={"review_id": str(review.id), "reminder_count": review.reminder_count},
        )

    def send_escalation(self, manager: DirectoryUser, review: Review) -> None:
        logger.info(
            "Escalated review %s to manager %s",
            review.id,
            manager.email,
            extra={"review_id": str(review.id), "manager_id": str(manager.id)},
        )
