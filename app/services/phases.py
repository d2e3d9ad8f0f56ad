"""Phase state machine for review cycles.

Phases form a fixed line: planning -> self -> peer -> manager -> upward ->
calibration -> completed. `status` is the only state column; `current_phase`
is an alias kept for API consumers.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.clock import as_naive_utc, utcnow
from app.core.config import settings
from app.core.exceptions import (
    AlreadyCompletedError,
    AlreadyStartedError,
    NoValidPhaseError,
    NotFoundError,
    StaleCycleError,
    TemplateRequiredError,
    ValidationError,
)
from app.core.optimistic_lock import flush_cycle
from app.models.review import REVIEW_TYPES
from app.models.review_cycle import PHASE_ORDER, CyclePhase, ReviewCycle
from app.models.user import User
from app.services.assignment import AssignmentEngine, AssignmentResult, requires_assignment

logger = logging.getLogger(__name__)

INITIAL_PHASE = PHASE_ORDER[0]
TERMINAL_PHASE = PHASE_ORDER[-1]
_INDEX = {name: i for i, name in enumerate(PHASE_ORDER)}


def is_terminal(phase: str) -> bool:
    return phase == TERMINAL_PHASE


def next_phase(phase: str) -> str | None:
    idx = _INDEX[phase]
    return PHASE_ORDER[idx + 1] if idx + 1 < len(PHASE_ORDER) else None


def is_phase_enabled(cycle: ReviewCycle, phase: str) -> bool:
    """Review phases follow the cycle's flags; calibration/completed are always on."""
    if phase in REVIEW_TYPES:
        return bool((cycle.review_types or {}).get(phase))
    return phase != INITIAL_PHASE


def current_phase_descriptor(cycle: ReviewCycle) -> CyclePhase | None:
    return cycle.get_phase(cycle.status)


def is_current_phase_overdue(cycle: ReviewCycle, now: datetime) -> bool:
    phase = current_phase_descriptor(cycle)
    if phase is None:
        return False
    return as_naive_utc(now) > as_naive_utc(phase.end_date)


@dataclass
class PhaseSpec:
    name: str
    start_date: datetime
    end_date: datetime
    reminder_dates: list[datetime] | None = None
    instructions: str | None = None


@dataclass
class TransitionResult:
    cycle: ReviewCycle
    previous_phase: str
    assignment: AssignmentResult


class PhaseStateMachine:
    def __init__(
        self,
        db: Session,
        assignment: AssignmentEngine | None = None,
        actor: User | None = None,
        skip_disabled_phases: bool | None = None,
    ):
        self.db = db
        self.actor = actor
        self.assignment = assignment or AssignmentEngine(db, actor=actor)
        self.skip_disabled_phases = (
            settings.SKIP_DISABLED_PHASES if skip_disabled_phases is None else skip_disabled_phases
        )

    def get_cycle(self, cycle_id, lock: bool = False) -> ReviewCycle:
        try:
            cid = cycle_id if isinstance(cycle_id, uuid.UUID) else uuid.UUID(str(cycle_id))
        except ValueError:
            raise NotFoundError("Review cycle", cycle_id)
        q = self.db.query(ReviewCycle).filter(ReviewCycle.id == cid)
        if lock:
            q = q.with_for_update()
        cycle = q.one_or_none()
        if not cycle:
            raise NotFoundError("Review cycle", cycle_id)
        return cycle

    def first_phase(self, cycle: ReviewCycle) -> str:
        for phase in PHASE_ORDER[1:]:
            if is_phase_enabled(cycle, phase):
                return phase
        raise NoValidPhaseError(cycle.review_types)

    def start(self, cycle_id) -> TransitionResult:
        cycle = self.get_cycle(cycle_id, lock=True)
        if cycle.status != INITIAL_PHASE:
            raise AlreadyStartedError(cycle.status)

        target = self.first_phase(cycle)
        self._check_template(cycle, target)
        return self._transition(cycle, target, action="CYCLE_STARTED")

    def advance(self, cycle_id, expected_version: int | None = None) -> TransitionResult:
        cycle = self.get_cycle(cycle_id, lock=True)
        if is_terminal(cycle.status):
            raise AlreadyCompletedError(cycle.status)
        if expected_version is not None and expected_version != cycle.version:
            raise StaleCycleError(cycle.id, expected=expected_version, current=cycle.version)

        target = next_phase(cycle.status)
        if self.skip_disabled_phases:
            while target in REVIEW_TYPES and not is_phase_enabled(cycle, target):
                target = next_phase(target)

        self._check_template(cycle, target)

        current = current_phase_descriptor(cycle)
        if current is not None:
            current.is_complete = True
        return self._transition(cycle, target, action="PHASE_ADVANCED")

    def configure_phases(self, cycle_id, phases: list[PhaseSpec]) -> ReviewCycle:
        self.validate_phases(phases)
        cycle = self.get_cycle(cycle_id)

        before = [p.name for p in cycle.phases]
        cycle.phases = [
            CyclePhase(
                name=spec.name,
                position=_INDEX[spec.name],
                start_date=as_naive_utc(spec.start_date),
                end_date=as_naive_utc(spec.end_date),
                reminder_dates=[as_naive_utc(d).isoformat() for d in (spec.reminder_dates or [])],
                instructions=spec.instructions,
            )
            for spec in sorted(phases, key=lambda s: _INDEX[s.name])
        ]
        # touch the parent row so the version moves with the phase list
        cycle.updated_at = utcnow()

        log_event(
            db=self.db,
            actor=self.actor,
            action="CYCLE_PHASES_CONFIGURED",
            entity_type="review_cycle",
            entity_id=cycle.id,
            metadata={"before": before, "after": [p.name for p in phases]},
        )
        self._flush(cycle)
        self.db.commit()
        return cycle

    @staticmethod
    def validate_phases(phases: list[PhaseSpec]) -> None:
        seen: set[str] = set()
        for spec in phases:
            if spec.name not in _INDEX:
                raise ValidationError(
                    f"Invalid phase name '{spec.name}'",
                    details={"phase": spec.name, "allowed": list(PHASE_ORDER)},
                )
            if spec.name in seen:
                raise ValidationError(f"Phase '{spec.name}' configured twice", details={"phase": spec.name})
            seen.add(spec.name)
            if as_naive_utc(spec.end_date) <= as_naive_utc(spec.start_date):
                raise ValidationError(
                    f"Phase '{spec.name}' must have a positive duration",
                    details={
                        "phase": spec.name,
                        "start_date": spec.start_date.isoformat(),
                        "end_date": spec.end_date.isoformat(),
                    },
                )

    def _check_template(self, cycle: ReviewCycle, target: str) -> None:
        # Refuse before mutating: the new phase could not produce its reviews
        if requires_assignment(target) and is_phase_enabled(cycle, target) and cycle.template_id is None:
            raise TemplateRequiredError(cycle.id, target)

    def _transition(self, cycle: ReviewCycle, target: str, action: str) -> TransitionResult:
        prev = cycle.status
        cycle.status = target

        log_event(
            db=self.db,
            actor=self.actor,
            action=action,
            entity_type="review_cycle",
            entity_id=cycle.id,
            metadata={"from": prev, "to": target},
        )
        self._flush(cycle)
        self.db.commit()
        logger.info("Cycle %s moved from %s to %s", cycle.name, prev, target, extra={"cycle_id": str(cycle.id)})

        result = self.assignment.assign_reviews_for_phase(cycle, target)
        return TransitionResult(cycle=cycle, previous_phase=prev, assignment=result)

    def _flush(self, cycle: ReviewCycle) -> None:
        flush_cycle(self.db, cycle)
