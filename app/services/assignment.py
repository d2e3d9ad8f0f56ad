"""Derive who reviews whom for a cycle and persist the missing reviews.

Every insert goes through `insert_if_absent`, keyed on
(cycle_id, reviewer_id, reviewee_id, type), so re-running an assignment is a
no-op for pairs that already exist and picks up where a failed run stopped.
"""
import logging
import random
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.config import settings
from app.core.exceptions import NotFoundError, TemplateRequiredError, ValidationError
from app.core.optimistic_lock import flush_cycle
from app.models.review import REVIEW_TYPES, Review
from app.models.review_cycle import PHASE_ORDER, ReviewCycle
from app.models.user import User
from app.services.directory import Directory, DirectoryUser, SqlDirectory

logger = logging.getLogger(__name__)

Pair = tuple[uuid.UUID, uuid.UUID]  # (reviewer_id, reviewee_id)


@dataclass
class AssignmentResult:
    created_count: int = 0
    skipped_count: int = 0
    by_type: dict[str, int] = field(default_factory=dict)

    def add(self, review_type: str, created: bool) -> None:
        if created:
            self.created_count += 1
            self.by_type[review_type] = self.by_type.get(review_type, 0) + 1
        else:
            self.skipped_count += 1


def build_rng() -> random.Random:
    return random.Random(settings.ASSIGNMENT_RANDOM_SEED)


def requires_assignment(phase: str) -> bool:
    """Only the four review phases create reviews; the rest are no-ops."""
    return phase in REVIEW_TYPES


def _positive(name: str, value: int | None, default: int) -> int:
    if value is None:
        return default
    if value < 1:
        raise ValidationError(f"{name} must be a positive integer", details={name: value})
    return value


class AssignmentEngine:
    def __init__(
        self,
        db: Session,
        directory: Directory | None = None,
        rng: random.Random | None = None,
        actor: User | None = None,
    ):
        self.db = db
        self.directory = directory or SqlDirectory(db)
        self.rng = rng or build_rng()
        self.actor = actor

    # ---- public operations ----

    def assign_reviews_for_phase(
        self,
        cycle: ReviewCycle | str | uuid.UUID,
        phase: str,
        peer_count: int | None = None,
        upward_count: int | None = None,
    ) -> AssignmentResult:
        if phase not in PHASE_ORDER:
            raise ValidationError(f"Unknown phase '{phase}'", details={"phase": phase, "allowed": list(PHASE_ORDER)})

        cycle = self._resolve_cycle(cycle)
        result = AssignmentResult()

        if not requires_assignment(phase):
            logger.info("No assignment needed for phase %s", phase, extra={"cycle_id": str(cycle.id)})
            return result

        if not (cycle.review_types or {}).get(phase):
            logger.info(
                "Phase %s is not enabled for cycle %s, skipping assignments", phase, cycle.id,
            )
            return result

        if cycle.template_id is None:
            raise TemplateRequiredError(cycle.id, phase)

        peers = _positive("peer_count", peer_count, settings.DEFAULT_PEERS_PER_USER)
        upward = _positive("upward_count", upward_count, settings.DEFAULT_UPWARD_COUNT)

        population = self.directory.list_participants(cycle)
        self._assign_type(cycle, phase, population, result, peer_count=peers, upward_count=upward)

        self._record(cycle, "REVIEWS_ASSIGNED", {"phase": phase}, result)
        logger.info(
            "Assigned reviews for phase %s in cycle %s: %d created, %d already present",
            phase, cycle.name, result.created_count, result.skipped_count,
        )
        return result

    def bulk_assign(
        self,
        cycle_id: str | uuid.UUID,
        types: Iterable[str],
        user_ids: Iterable[str] | None = None,
        peer_count: int | None = None,
        upward_count: int | None = None,
    ) -> AssignmentResult:
        """
        Administrator-driven assignment over an explicit population.
        Leaves the cycle in status 'self' whatever types were requested.
        """
        requested = list(dict.fromkeys(types))
        if not requested:
            raise ValidationError("At least one review type is required")
        unknown = sorted(t for t in requested if t not in REVIEW_TYPES)
        if unknown:
            raise ValidationError("Unknown review types", details={"unknown_types": unknown, "allowed": list(REVIEW_TYPES)})

        peers = _positive("peer_count", peer_count, settings.DEFAULT_BULK_PEER_COUNT)
        upward = _positive("upward_count", upward_count, settings.DEFAULT_UPWARD_COUNT)

        cycle = self._resolve_cycle(cycle_id)
        if cycle.template_id is None:
            raise TemplateRequiredError(cycle.id)

        population = self._bulk_population(user_ids)

        result = AssignmentResult()
        for review_type in REVIEW_TYPES:
            if review_type in requested:
                self._assign_type(cycle, review_type, population, result, peer_count=peers, upward_count=upward)

        prev = cycle.status
        cycle.status = "self"
        self._record(cycle, "REVIEWS_BULK_ASSIGNED", {"types": requested, "from": prev, "to": cycle.status}, result)
        flush_cycle(self.db, cycle)
        self.db.commit()

        logger.info(
            "Bulk assignment for cycle %s created %d reviews (%s)",
            cycle.name, result.created_count, ",".join(requested),
        )
        return result

    def insert_if_absent(
        self,
        cycle: ReviewCycle,
        reviewer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
        review_type: str,
        is_anonymous: bool = False,
        visible_to_reviewee: bool = True,
    ) -> bool:
        """Returns True when a new review was created."""
        if self._exists(cycle, reviewer_id, reviewee_id, review_type):
            return False

        # SAVEPOINT so a concurrent insert of the same tuple only loses this row
        try:
            with self.db.begin_nested():
                self.db.add(
                    Review(
                        cycle_id=cycle.id,
                        template_id=cycle.template_id,
                        reviewer_id=reviewer_id,
                        reviewee_id=reviewee_id,
                        type=review_type,
                        status="pending",
                        approval_status="pending",
                        is_anonymous=is_anonymous,
                        visible_to_reviewee=visible_to_reviewee,
                    )
                )
                self.db.flush()
        except IntegrityError:
            # Only a lost race on the unique key counts as already present
            if not self._exists(cycle, reviewer_id, reviewee_id, review_type):
                raise
            logger.debug("Review %s %s->%s already exists", review_type, reviewer_id, reviewee_id)
            return False

        # Inserted rows survive a later failure in the same run
        self.db.commit()
        return True

    def _exists(self, cycle: ReviewCycle, reviewer_id: uuid.UUID, reviewee_id: uuid.UUID, review_type: str) -> bool:
        found = (
            self.db.query(Review.id)
            .filter(
                Review.cycle_id == cycle.id,
                Review.reviewer_id == reviewer_id,
                Review.reviewee_id == reviewee_id,
                Review.type == review_type,
            )
            .first()
        )
        return found is not None

    # ---- pairing algorithms ----

    def self_pairs(self, population: list[DirectoryUser]) -> Iterator[Pair]:
        for user in population:
            yield user.id, user.id

    def peer_pairs(self, population: list[DirectoryUser], peers_per_user: int) -> Iterator[Pair]:
        """
        Cascade per reviewee: same manager, then same department, then a random
        sample of the remaining population.
        """
        for reviewee in population:
            chosen: list[DirectoryUser] = []
            taken = {reviewee.id}

            def extend(candidates: list[DirectoryUser]) -> None:
                fresh = [c for c in candidates if c.id not in taken]
                for c in self._take(fresh, peers_per_user - len(chosen)):
                    chosen.append(c)
                    taken.add(c.id)

            if reviewee.manager_id:
                extend(self.directory.find_by_manager(reviewee.manager_id, exclude=[reviewee.id]))
            if len(chosen) < peers_per_user and reviewee.department:
                extend(self.directory.find_by_department(reviewee.department, exclude=[reviewee.id]))
            if len(chosen) < peers_per_user:
                extend(population)

            for peer in chosen:
                yield peer.id, reviewee.id

    def manager_pairs(self, population: list[DirectoryUser]) -> Iterator[Pair]:
        for reviewee in population:
            if not reviewee.manager_id or reviewee.manager_id == reviewee.id:
                continue
            manager = self.directory.get_user(reviewee.manager_id)
            if manager is None:
                continue
            yield manager.id, reviewee.id

    def upward_pairs(self, population: list[DirectoryUser], upward_count: int) -> Iterator[Pair]:
        by_manager: dict[uuid.UUID, list[DirectoryUser]] = defaultdict(list)
        for user in population:
            if user.manager_id and user.manager_id != user.id:
                by_manager[user.manager_id].append(user)

        for manager_id in sorted(by_manager):
            manager = self.directory.get_user(manager_id)
            if manager is None:
                continue
            for employee in self._take(by_manager[manager_id], upward_count):
                yield employee.id, manager.id

    # ---- helpers ----

    def _take(self, candidates: list[DirectoryUser], k: int) -> list[DirectoryUser]:
        if k <= 0:
            return []
        if len(candidates) <= k:
            return list(candidates)
        return self.rng.sample(candidates, k)

    def _assign_type(
        self,
        cycle: ReviewCycle,
        review_type: str,
        population: list[DirectoryUser],
        result: AssignmentResult,
        peer_count: int,
        upward_count: int,
    ) -> None:
        anonymity = cycle.anonymity_settings or {}
        is_anonymous, visible = False, True

        if review_type == "self":
            pairs = self.self_pairs(population)
        elif review_type == "peer":
            pairs = self.peer_pairs(population, peer_count)
            setting = anonymity.get("peerReviews", "full")
            is_anonymous, visible = setting == "full", setting != "none"
        elif review_type == "manager":
            pairs = self.manager_pairs(population)
        else:
            pairs = self.upward_pairs(population, upward_count)
            setting = anonymity.get("upwardReviews", "full")
            is_anonymous, visible = setting == "full", setting != "none"

        for reviewer_id, reviewee_id in pairs:
            created = self.insert_if_absent(
                cycle,
                reviewer_id,
                reviewee_id,
                review_type,
                is_anonymous=is_anonymous,
                visible_to_reviewee=visible,
            )
            result.add(review_type, created)

    def _bulk_population(self, user_ids: Iterable[str] | None) -> list[DirectoryUser]:
        if not user_ids:
            return self.directory.list_users()

        wanted: list[uuid.UUID] = []
        malformed: list[str] = []
        for raw in user_ids:
            try:
                wanted.append(uuid.UUID(str(raw)))
            except ValueError:
                malformed.append(str(raw))

        found = self.directory.list_users(wanted)
        found_ids = {u.id for u in found}
        missing = sorted(malformed + [str(i) for i in wanted if i not in found_ids])
        if missing:
            raise ValidationError("Unknown or inactive users", details={"missing_user_ids": missing})
        return found

    def _resolve_cycle(self, cycle: ReviewCycle | str | uuid.UUID) -> ReviewCycle:
        if isinstance(cycle, ReviewCycle):
            return cycle
        try:
            cycle_id = cycle if isinstance(cycle, uuid.UUID) else uuid.UUID(str(cycle))
        except ValueError:
            raise NotFoundError("Review cycle", cycle)
        found = self.db.get(ReviewCycle, cycle_id)
        if not found:
            raise NotFoundError("Review cycle", cycle)
        return found

    def _record(self, cycle: ReviewCycle, action: str, metadata: dict, result: AssignmentResult) -> None:
        log_event(
            db=self.db,
            actor=self.actor,
            action=action,
            entity_type="review_cycle",
            entity_id=cycle.id,
            metadata={
                **metadata,
                "created": result.created_count,
                "skipped": result.skipped_count,
                "by_type": result.by_type,
            },
        )
