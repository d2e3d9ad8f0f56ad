"""Periodic workflow sweep.

The sweep keeps no state of its own between ticks: reminder bookkeeping lives
on each Review, so several runners can share one database.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.clock import as_naive_utc, utcnow
from app.core.config import settings
from app.models.review import REVIEW_TYPES, Review
from app.models.review_cycle import CyclePhase, ReviewCycle
from app.services.assignment import AssignmentEngine
from app.services.directory import Directory, SqlDirectory
from app.services.notifier import LoggingNotifier, Notifier
from app.services.phases import (
    INITIAL_PHASE,
    TERMINAL_PHASE,
    PhaseStateMachine,
    current_phase_descriptor,
)

logger = logging.getLogger(__name__)

OPEN_REVIEW_STATUSES = ("pending", "in_progress")


@dataclass
class SweepResult:
    advanced_cycles: list[str] = field(default_factory=list)
    completed_phases: list[str] = field(default_factory=list)
    reminders_sent: list[str] = field(default_factory=list)
    escalations: list[str] = field(default_factory=list)
    skipped_cycles: list[str] = field(default_factory=list)
    failed_cycles: list[dict] = field(default_factory=list)


class WorkflowScheduler:
    def __init__(
        self,
        db: Session,
        notifier: Notifier | None = None,
        directory: Directory | None = None,
        phases: PhaseStateMachine | None = None,
        escalation_threshold: int | None = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.directory = directory or SqlDirectory(db)
        self.phases = phases or PhaseStateMachine(db, AssignmentEngine(db, directory=self.directory))
        self.escalation_threshold = (
            settings.ESCALATION_REMINDER_THRESHOLD if escalation_threshold is None else escalation_threshold
        )

    def active_cycles(self) -> list[ReviewCycle]:
        return (
            self.db.query(ReviewCycle)
            .filter(ReviewCycle.status.not_in([INITIAL_PHASE, TERMINAL_PHASE]))
            .order_by(ReviewCycle.created_at, ReviewCycle.id)
            .all()
        )

    def run_sweep(self, now: datetime | None = None) -> SweepResult:
        now = as_naive_utc(now) or utcnow()
        result = SweepResult()

        cycles = self.active_cycles()
        logger.info("Processing workflows for %d active review cycles", len(cycles))

        for cycle in cycles:
            cycle_id = str(cycle.id)
            try:
                self.process_cycle(cycle, now, result)
                self.db.commit()
            except Exception as exc:
                self.db.rollback()
                logger.exception("Error processing workflow for cycle %s", cycle_id)
                result.failed_cycles.append({"cycle_id": cycle_id, "error": str(exc)})

        return result

    def process_cycle(self, cycle: ReviewCycle, now: datetime, result: SweepResult) -> None:
        phase = current_phase_descriptor(cycle)
        if phase is None:
            logger.error("Cycle %s has no descriptor for phase %s", cycle.id, cycle.status)
            result.skipped_cycles.append(str(cycle.id))
            return

        if now > as_naive_utc(phase.end_date):
            logger.info("Phase %s for cycle %s has ended", cycle.status, cycle.name)
            if cycle.auto_advance_phases:
                self.phases.advance(cycle.id)
                result.advanced_cycles.append(str(cycle.id))
                logger.info("Automatically advanced cycle %s to phase %s", cycle.name, cycle.status)
            elif not phase.is_complete:
                phase.is_complete = True
                log_event(
                    db=self.db,
                    actor=None,
                    action="PHASE_DEADLINE_PASSED",
                    entity_type="review_cycle",
                    entity_id=cycle.id,
                    metadata={"phase": phase.name},
                )
                result.completed_phases.append(str(cycle.id))
            return

        self.process_reminders(cycle, phase, now, result)

    def process_reminders(self, cycle: ReviewCycle, phase: CyclePhase, now: datetime, result: SweepResult) -> None:
        reminder_settings = cycle.reminder_settings or {}
        if not reminder_settings.get("enabled", True):
            return

        frequency = timedelta(days=reminder_settings.get("frequency", 3))
        escalate = reminder_settings.get("escalateToManager", True)

        q = self.db.query(Review).filter(
            Review.cycle_id == cycle.id,
            Review.status.in_(OPEN_REVIEW_STATUSES),
        )
        # calibration chases every outstanding review
        if phase.name in REVIEW_TYPES:
            q = q.filter(Review.type == phase.name)
        pending = q.order_by(Review.created_at, Review.id).all()
        logger.info("Found %d pending reviews for phase %s", len(pending), phase.name)

        for review in pending:
            last = as_naive_utc(review.last_reminder_sent)
            if last is not None and now - last < frequency:
                continue

            reviewer = self.directory.get_user(review.reviewer_id)
            self._dispatch(self.notifier.send_reminder, review, reviewer)
            review.last_reminder_sent = now
            review.reminder_count = (review.reminder_count or 0) + 1
            result.reminders_sent.append(str(review.id))

            if (
                escalate
                and review.reminder_count >= self.escalation_threshold
                and reviewer is not None
                and reviewer.manager_id
            ):
                manager = self.directory.get_user(reviewer.manager_id)
                if manager is not None:
                    self._dispatch(self.notifier.send_escalation, manager, review)
                    result.escalations.append(str(review.id))

    @staticmethod
    def _dispatch(send: Callable, *args) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("Notifier failed in %s", getattr(send, "__name__", "send"))


async def run_forever(session_factory: Callable[[], Session], interval_seconds: int) -> None:
    """In-process ticker; each tick gets its own session."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(_sweep_once, session_factory)
        except Exception:
            logger.exception("Workflow sweep failed")


def _sweep_once(session_factory: Callable[[], Session]) -> SweepResult:
    db = session_factory()
    try:
        result = WorkflowScheduler(db).run_sweep()
        logger.info(
            "Workflow sweep done",
            extra={
                "advanced": len(result.advanced_cycles),
                "reminders": len(result.reminders_sent),
                "escalations": len(result.escalations),
                "failed": len(result.failed_cycles),
            },
        )
        return result
    finally:
        db.close()
