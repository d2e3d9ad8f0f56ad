import pytest
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import (
    AlreadyCompletedError,
    AlreadyStartedError,
    NotFoundError,
    StaleCycleError,
    TemplateRequiredError,
    ValidationError,
)
from app.db.base import Base
from app.db.session import build_engine
from app.models.audit_event import AuditEvent
from app.models.review import Review
from app.models.review_cycle import PHASE_ORDER, ReviewCycle
from app.services.assignment import AssignmentEngine
from app.services.phases import PhaseSpec, PhaseStateMachine, next_phase

from tests.helpers import (
    add_phases,
    create_cycle,
    create_template,
    create_user,
    seed_org,
    seeded_rng,
)


def machine(db, **kwargs) -> PhaseStateMachine:
    return PhaseStateMachine(db, AssignmentEngine(db, rng=seeded_rng()), **kwargs)


def test_next_phase_follows_canonical_order():
    assert next_phase("planning") == "self"
    assert next_phase("calibration") == "completed"
    assert next_phase("completed") is None


def test_start_assigns_self_reviews_for_every_participant(db_session):
    people = [create_user(db_session, f"p{i}@local.test") for i in range(4)]
    cycle = create_cycle(
        db_session,
        participants=people,
        template=create_template(db_session),
        review_types={"self": True, "peer": True, "manager": False, "upward": False},
    )

    result = machine(db_session).start(cycle.id)

    assert result.cycle.status == "self"
    assert result.cycle.current_phase == "self"
    assert result.previous_phase == "planning"
    reviews = db_session.query(Review).filter(Review.cycle_id == cycle.id).all()
    assert len(reviews) == 4
    assert all(r.type == "self" and r.reviewer_id == r.reviewee_id for r in reviews)
    assert {r.reviewee_id for r in reviews} == {p.id for p in people}


def test_start_skips_to_first_enabled_phase(db_session):
    _, boss, reports = seed_org(db_session)
    cycle = create_cycle(
        db_session,
        participants=[boss, *reports],
        template=create_template(db_session),
        review_types={"self": False, "peer": False, "manager": True, "upward": False},
    )

    result = machine(db_session).start(cycle.id)

    assert result.cycle.status == "manager"
    assert result.assignment.by_type == {"manager": 3}


def test_start_with_no_review_types_goes_to_calibration(db_session):
    cycle = create_cycle(
        db_session,
        review_types={"self": False, "peer": False, "manager": False, "upward": False},
    )

    result = machine(db_session).start(cycle.id)

    assert result.cycle.status == "calibration"
    assert result.assignment.created_count == 0


def test_start_twice_fails(db_session):
    cycle = create_cycle(db_session, template=create_template(db_session))
    sm = machine(db_session)
    sm.start(cycle.id)

    with pytest.raises(AlreadyStartedError) as exc:
        sm.start(cycle.id)
    assert exc.value.details["current_phase"] == "self"


def test_start_without_template_does_not_move(db_session):
    cycle = create_cycle(db_session, participants=[create_user(db_session, "x@local.test")])

    with pytest.raises(TemplateRequiredError):
        machine(db_session).start(cycle.id)

    db_session.refresh(cycle)
    assert cycle.status == "planning"
    assert db_session.query(Review).count() == 0


def test_unknown_cycle_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        machine(db_session).start("not-a-uuid")


def test_walk_visits_every_phase_in_order(db_session):
    _, boss, reports = seed_org(db_session)
    cycle = create_cycle(
        db_session,
        participants=[boss, *reports],
        template=create_template(db_session),
        review_types={"self": True, "peer": True, "manager": True, "upward": True},
    )
    sm = machine(db_session)

    visited = [sm.start(cycle.id).cycle.status]
    advances = 0
    while visited[-1] != "completed":
        visited.append(sm.advance(cycle.id).cycle.status)
        advances += 1

    assert visited == list(PHASE_ORDER[1:])
    assert advances <= 6

    by_type = dict(
        (t, db_session.query(Review).filter(Review.cycle_id == cycle.id, Review.type == t).count())
        for t in ("self", "peer", "manager", "upward")
    )
    assert by_type["self"] == 4
    assert by_type["manager"] == 3
    assert by_type["upward"] == 3


def test_advance_marks_previous_descriptor_complete(db_session):
    cycle = create_cycle(db_session, template=create_template(db_session), status="manager")
    add_phases(db_session, cycle)

    result = machine(db_session).advance(cycle.id)

    assert result.cycle.status == "upward"
    assert result.cycle.current_phase == "upward"
    assert cycle.get_phase("manager").is_complete is True
    assert cycle.get_phase("upward").is_complete is False


def test_advance_enters_disabled_phase_by_default(db_session):
    cycle = create_cycle(
        db_session,
        template=create_template(db_session),
        review_types={"self": True, "peer": True, "manager": True, "upward": False},
        status="manager",
    )

    result = machine(db_session).advance(cycle.id)

    assert result.cycle.status == "upward"
    assert result.assignment.created_count == 0


def test_advance_can_skip_disabled_phases(db_session):
    cycle = create_cycle(
        db_session,
        template=create_template(db_session),
        review_types={"self": True, "peer": False, "manager": False, "upward": False},
        status="self",
    )

    result = machine(db_session, skip_disabled_phases=True).advance(cycle.id)

    assert result.cycle.status == "calibration"


def test_advance_on_completed_fails_without_mutation(db_session):
    cycle = create_cycle(db_session, status="completed")
    version = cycle.version
    events = db_session.query(AuditEvent).count()

    with pytest.raises(AlreadyCompletedError):
        machine(db_session).advance(cycle.id)

    db_session.refresh(cycle)
    assert cycle.status == "completed"
    assert cycle.version == version
    assert db_session.query(AuditEvent).count() == events


def test_advance_with_stale_version_is_refused(db_session):
    cycle = create_cycle(db_session, template=create_template(db_session), status="self")
    stale = cycle.version
    sm = machine(db_session)
    sm.advance(cycle.id, expected_version=stale)

    with pytest.raises(StaleCycleError) as exc:
        sm.advance(cycle.id, expected_version=stale)
    assert exc.value.details["current"] == stale + 1

    db_session.refresh(cycle)
    assert cycle.status == "peer"


def test_advance_without_template_into_review_phase_fails(db_session):
    cycle = create_cycle(db_session, status="self")

    with pytest.raises(TemplateRequiredError):
        machine(db_session).advance(cycle.id)

    db_session.refresh(cycle)
    assert cycle.status == "self"


def test_transitions_are_audited(db_session):
    cycle = create_cycle(db_session, template=create_template(db_session))
    sm = machine(db_session)
    sm.start(cycle.id)
    sm.advance(cycle.id)

    actions = [
        e.action
        for e in db_session.query(AuditEvent)
        .filter(AuditEvent.entity_id == cycle.id)
        .order_by(AuditEvent.created_at)
        .all()
    ]
    assert "CYCLE_STARTED" in actions
    assert "PHASE_ADVANCED" in actions
    assert "REVIEWS_ASSIGNED" in actions


def test_configure_phases_replaces_descriptors(db_session):
    from datetime import datetime

    cycle = create_cycle(db_session)
    add_phases(db_session, cycle, names=("self", "peer"))

    sm = machine(db_session)
    sm.configure_phases(
        cycle.id,
        [
            PhaseSpec("manager", datetime(2026, 3, 1), datetime(2026, 3, 15)),
            PhaseSpec("self", datetime(2026, 2, 1), datetime(2026, 2, 15), instructions="Reflect"),
        ],
    )

    assert [p.name for p in cycle.phases] == ["self", "manager"]
    assert cycle.get_phase("self").instructions == "Reflect"
    assert cycle.get_phase("peer") is None


@pytest.mark.parametrize(
    "specs",
    [
        [("review", 1, 2)],
        [("self", 1, 2), ("self", 3, 4)],
        [("peer", 5, 5)],
    ],
)
def test_configure_phases_rejects_bad_input(db_session, specs):
    from datetime import datetime

    cycle = create_cycle(db_session)
    phases = [PhaseSpec(n, datetime(2026, 1, s), datetime(2026, 1, e)) for n, s, e in specs]

    with pytest.raises(ValidationError):
        machine(db_session).configure_phases(cycle.id, phases)
    assert cycle.phases == []


@pytest.fixture()
def file_sessions(tmp_path):
    """Two independent connections to one file database, like two API workers."""
    store = build_engine(f"sqlite:///{tmp_path / 'cycles.db'}")
    Base.metadata.create_all(bind=store)
    try:
        yield sessionmaker(bind=store, autoflush=False, expire_on_commit=False)
    finally:
        store.dispose()


def test_second_of_two_concurrent_advances_is_stale(file_sessions):
    with file_sessions() as setup:
        cycle = create_cycle(
            setup,
            template=create_template(setup),
            status="self",
            review_types={"self": True, "peer": False, "manager": False, "upward": False},
        )
        cycle_id, version = cycle.id, cycle.version

    with file_sessions() as first, file_sessions() as second:
        # both workers read the cycle before either writes
        first.get(ReviewCycle, cycle_id)
        first.commit()
        second.get(ReviewCycle, cycle_id)
        second.commit()

        machine(first).advance(cycle_id)
        with pytest.raises(StaleCycleError):
            machine(second).advance(cycle_id)

    with file_sessions() as check:
        stored = check.get(ReviewCycle, cycle_id)
        assert stored.status == "peer"
        assert stored.version == version + 1
        assert check.query(AuditEvent).filter(AuditEvent.action == "PHASE_ADVANCED").count() == 1
