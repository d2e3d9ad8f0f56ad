import pytest

from app.core.clock import utcnow
from app.core.exceptions import (
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from app.models.audit_event import AuditEvent
from app.services.approval import ApprovalWorkflow

from tests.helpers import create_cycle, create_review, create_template, create_user, seed_org


@pytest.fixture()
def org(db_session):
    admin, boss, reports = seed_org(db_session)
    cycle = create_cycle(db_session, template=create_template(db_session), status="manager")
    return admin, boss, reports, cycle


def submitted(db, cycle, reviewer, reviewee, review_type="peer", **fields):
    return create_review(
        db, cycle, reviewer, reviewee,
        review_type=review_type, status="submitted", approval_status="pending",
        submitted_at=utcnow(), **fields,
    )


def test_manager_approves_submitted_review(db_session, org):
    _, boss, (alice, bob, _), cycle = org
    review = submitted(db_session, cycle, bob, alice)
    before = utcnow()

    result = ApprovalWorkflow(db_session).approve(review.id, boss.id)

    assert result.status == "approved"
    assert result.approval_status == "approved"
    assert result.approved_by_id == boss.id
    assert result.approved_at >= before


def test_admin_can_approve(db_session, org):
    admin, _, (alice, bob, _), cycle = org
    review = submitted(db_session, cycle, bob, alice)

    result = ApprovalWorkflow(db_session).approve(review.id, admin.id)

    assert result.approved_by_id == admin.id


def test_is_admin_flag_counts_as_admin(db_session, org):
    _, _, (alice, bob, _), cycle = org
    root = create_user(db_session, "root@local.test", is_admin=True)
    review = submitted(db_session, cycle, bob, alice)

    assert ApprovalWorkflow(db_session).approve(review.id, root.id).status == "approved"


def test_employee_cannot_approve(db_session, org):
    _, _, (alice, bob, carol), cycle = org
    review = submitted(db_session, cycle, bob, alice)

    with pytest.raises(NotAuthorizedError) as exc:
        ApprovalWorkflow(db_session).approve(review.id, carol.id)

    assert exc.value.details["role"] == "EMPLOYEE"
    assert exc.value.details["required_roles"] == ["ADMIN", "MANAGER"]
    db_session.refresh(review)
    assert review.status == "submitted"


def test_unknown_approver(db_session, org):
    _, _, (alice, bob, _), cycle = org
    review = submitted(db_session, cycle, bob, alice)

    with pytest.raises(NotFoundError):
        ApprovalWorkflow(db_session).approve(review.id, "00000000-0000-0000-0000-000000000000")


def test_unknown_review(db_session, org):
    _, boss, _, _ = org

    with pytest.raises(NotFoundError):
        ApprovalWorkflow(db_session).approve("00000000-0000-0000-0000-000000000000", boss.id)


@pytest.mark.parametrize("status, approval_status", [("approved", "approved"), ("rejected", "rejected")])
def test_non_actionable_review_is_left_unchanged(db_session, org, status, approval_status):
    _, boss, (alice, bob, _), cycle = org
    review = create_review(db_session, cycle, bob, alice, status=status, approval_status=approval_status)
    version = review.version
    workflow = ApprovalWorkflow(db_session)

    with pytest.raises(InvalidStateError) as exc:
        workflow.approve(review.id, boss.id)
    assert exc.value.details == {"status": status, "approval_status": approval_status}

    with pytest.raises(InvalidStateError):
        workflow.reject(review.id, boss.id, "Needs more examples")

    db_session.refresh(review)
    assert (review.status, review.approval_status, review.version) == (status, approval_status, version)


def test_either_flag_makes_review_actionable(db_session, org):
    _, boss, (alice, bob, carol), cycle = org
    only_status = create_review(db_session, cycle, bob, alice, status="submitted", approval_status="rejected")
    only_pending = create_review(db_session, cycle, carol, alice, status="in_progress", approval_status="pending")
    workflow = ApprovalWorkflow(db_session)

    assert workflow.approve(only_status.id, boss.id).status == "approved"
    assert workflow.approve(only_pending.id, boss.id).status == "approved"


def test_reject_records_reason(db_session, org):
    _, boss, (alice, bob, _), cycle = org
    review = submitted(db_session, cycle, bob, alice)

    result = ApprovalWorkflow(db_session).reject(review.id, boss.id, "  Needs concrete examples ")

    assert result.status == "rejected"
    assert result.approval_status == "rejected"
    assert result.rejection_reason == "Needs concrete examples"


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_reject_requires_reason_before_anything_else(db_session, org, reason):
    _, boss, (alice, bob, _), cycle = org
    review = submitted(db_session, cycle, bob, alice)

    with pytest.raises(ValidationError):
        ApprovalWorkflow(db_session).reject(review.id, boss.id, reason)

    # Even for ids that do not exist: the reason is checked first
    with pytest.raises(ValidationError):
        ApprovalWorkflow(db_session).reject("missing", "missing", reason)

    db_session.refresh(review)
    assert review.status == "submitted"
    assert review.rejection_reason is None


def test_decisions_are_audited(db_session, org):
    _, boss, (alice, bob, carol), cycle = org
    a = submitted(db_session, cycle, bob, alice)
    b = submitted(db_session, cycle, carol, alice)
    workflow = ApprovalWorkflow(db_session, actor=boss)

    workflow.approve(a.id, boss.id)
    workflow.reject(b.id, boss.id, "Too short")

    actions = {
        e.entity_id: e.action
        for e in db_session.query(AuditEvent).filter(AuditEvent.entity_type == "review").all()
    }
    assert actions == {a.id: "REVIEW_APPROVED", b.id: "REVIEW_REJECTED"}


def test_pending_for_manager_covers_direct_reports(db_session, org):
    admin, boss, (alice, bob, carol), cycle = org
    outsider = create_user(db_session, "out@local.test")
    mine = submitted(db_session, cycle, bob, alice)
    not_mine = submitted(db_session, cycle, alice, outsider)
    create_review(db_session, cycle, carol, bob, status="approved", approval_status="approved")

    pending = ApprovalWorkflow(db_session).list_pending_for_manager(boss.id)

    assert [r.id for r in pending] == [mine.id]
    assert not_mine.id not in [r.id for r in pending]


def test_pending_for_manager_without_reports_uses_own_manager_reviews(db_session, org):
    _, _, (alice, bob, _), cycle = org
    lead = create_user(db_session, "lead@local.test", roles=("MANAGER",))
    own = submitted(db_session, cycle, lead, alice, review_type="manager")
    submitted(db_session, cycle, bob, alice)

    pending = ApprovalWorkflow(db_session).list_pending_for_manager(lead.id)

    assert [r.id for r in pending] == [own.id]


def test_admin_sees_all_pending(db_session, org):
    admin, boss, (alice, bob, carol), cycle = org
    outsider = create_user(db_session, "out@local.test")
    a = submitted(db_session, cycle, bob, alice)
    b = submitted(db_session, cycle, carol, outsider)

    workflow = ApprovalWorkflow(db_session)

    assert {r.id for r in workflow.list_pending_approvals(admin.id, is_admin=True)} == {a.id, b.id}
    assert {r.id for r in workflow.list_pending_approvals(boss.id, is_admin=False)} == {a.id}
