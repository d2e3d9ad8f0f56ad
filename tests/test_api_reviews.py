from fastapi.testclient import TestClient

from app.main import app

from tests.helpers import create_cycle, create_review, create_template, create_user, headers, seed_org


def setup_cycle(db, status="peer", **kwargs):
    admin, boss, reports = seed_org(db)
    cycle = create_cycle(db, participants=[boss, *reports], template=create_template(db), status=status, **kwargs)
    return admin, boss, reports, cycle


def test_reviewer_submits_and_manager_approves(db_session):
    admin, boss, (alice, bob, _), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, review_type="peer")
    client = TestClient(app)

    r = client.post(
        f"/reviews/{review.id}/submit",
        headers=headers(bob),
        json={"summary_feedback": "Great partner on the migration", "overall_rating": 4},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "submitted"
    assert r.json()["approval_status"] == "pending"
    assert r.json()["submitted_at"] is not None

    r = client.get("/reviews/pending-approvals", headers=headers(boss))
    assert [x["id"] for x in r.json()] == [str(review.id)]

    r = client.post(f"/reviews/{review.id}/approve", headers=headers(boss))
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "approved"
    assert body["approval_status"] == "approved"
    assert body["approved_by_id"] == str(boss.id)
    assert body["approved_at"] is not None

    r = client.get("/reviews/pending-approvals", headers=headers(boss))
    assert r.json() == []


def test_only_reviewer_can_submit(db_session):
    _, _, (alice, bob, carol), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, review_type="peer")

    client = TestClient(app)
    r = client.post(f"/reviews/{review.id}/submit", headers=headers(carol), json={})
    assert r.status_code == 403


def test_self_review_closes_after_self_phase(db_session):
    _, _, (alice, _, _), cycle = setup_cycle(db_session, status="peer")
    review = create_review(db_session, cycle, alice, alice, review_type="self")

    client = TestClient(app)
    r = client.post(f"/reviews/{review.id}/submit", headers=headers(alice), json={})
    assert r.status_code == 409
    assert r.json()["code"] == "PHASE_CLOSED"


def test_manager_review_not_open_during_peer_phase(db_session):
    _, boss, (alice, _, _), cycle = setup_cycle(db_session, status="peer")
    review = create_review(db_session, cycle, boss, alice, review_type="manager")

    client = TestClient(app)
    r = client.post(f"/reviews/{review.id}/submit", headers=headers(boss), json={})
    assert r.status_code == 409


def test_rejected_review_can_be_resubmitted(db_session):
    _, boss, (alice, bob, _), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, review_type="peer", status="submitted")
    client = TestClient(app)

    r = client.post(f"/reviews/{review.id}/reject", headers=headers(boss), json={"reason": "Add examples"})
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert r.json()["rejection_reason"] == "Add examples"

    r = client.post(f"/reviews/{review.id}/submit", headers=headers(bob), json={"summary_feedback": "With examples"})
    assert r.status_code == 200
    assert r.json()["status"] == "submitted"
    assert r.json()["approval_status"] == "pending"
    assert r.json()["rejection_reason"] is None


def test_reject_without_reason(db_session):
    _, boss, (alice, bob, _), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, status="submitted")

    client = TestClient(app)
    r = client.post(f"/reviews/{review.id}/reject", headers=headers(boss), json={"reason": " "})
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_approve_twice_conflicts(db_session):
    _, boss, (alice, bob, _), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, status="submitted")
    client = TestClient(app)

    assert client.post(f"/reviews/{review.id}/approve", headers=headers(boss)).status_code == 200
    r = client.post(f"/reviews/{review.id}/approve", headers=headers(boss))
    assert r.status_code == 409
    assert r.json()["context"] == {"status": "approved", "approval_status": "approved"}


def test_employee_cannot_approve(db_session):
    _, _, (alice, bob, carol), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, status="submitted")

    client = TestClient(app)
    r = client.post(f"/reviews/{review.id}/approve", headers=headers(carol))
    assert r.status_code == 403


def test_admin_sees_every_pending_approval(db_session):
    admin, _, (alice, bob, _), cycle = setup_cycle(db_session)
    outsider = create_user(db_session, "out@local.test")
    a = create_review(db_session, cycle, bob, alice, status="submitted")
    b = create_review(db_session, cycle, alice, outsider, status="submitted")

    client = TestClient(app)
    r = client.get("/reviews/pending-approvals", headers=headers(admin))
    assert {x["id"] for x in r.json()} == {str(a.id), str(b.id)}


def test_anonymous_reviewer_hidden_from_reviewee(db_session):
    _, _, (alice, bob, _), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, is_anonymous=True)
    client = TestClient(app)

    r = client.get(f"/reviews/{review.id}", headers=headers(alice))
    assert r.status_code == 200
    assert r.json()["reviewer_id"] is None

    r = client.get(f"/reviews/{review.id}", headers=headers(bob))
    assert r.json()["reviewer_id"] == str(bob.id)


def test_invisible_review_is_forbidden_to_reviewee(db_session):
    _, _, (alice, bob, carol), cycle = setup_cycle(db_session)
    review = create_review(db_session, cycle, bob, alice, visible_to_reviewee=False)
    client = TestClient(app)

    assert client.get(f"/reviews/{review.id}", headers=headers(alice)).status_code == 403
    assert client.get(f"/reviews/{review.id}", headers=headers(carol)).status_code == 403


def test_reports_reviews_walk_the_tree(db_session):
    admin, boss, (alice, bob, _), cycle = setup_cycle(db_session)
    intern = create_user(db_session, "intern@local.test", manager=alice)
    about_intern = create_review(db_session, cycle, bob, intern)
    about_alice = create_review(db_session, cycle, bob, alice)
    create_review(db_session, cycle, alice, boss, review_type="upward")

    client = TestClient(app)
    r = client.get(f"/reviews/reports/{boss.id}", headers=headers(boss))
    assert r.status_code == 200
    assert {x["id"] for x in r.json()} == {str(about_intern.id), str(about_alice.id)}

    other = create_user(db_session, "other@local.test", roles=("MANAGER",))
    r = client.get(f"/reviews/reports/{boss.id}", headers=headers(other))
    assert r.status_code == 403

    r = client.get(f"/reviews/reports/{boss.id}", headers=headers(admin))
    assert r.status_code == 200


def test_my_reviews(db_session):
    _, _, (alice, bob, _), cycle = setup_cycle(db_session)
    writing = create_review(db_session, cycle, alice, bob)
    receiving = create_review(db_session, cycle, bob, alice)
    create_review(db_session, cycle, alice, alice, review_type="self")
    hidden = create_review(db_session, cycle, bob, alice, review_type="upward", visible_to_reviewee=False)

    client = TestClient(app)
    r = client.get("/me/reviews?role=reviewee", headers=headers(alice))
    ids = {x["id"] for x in r.json()}
    assert str(receiving.id) in ids
    assert str(hidden.id) not in ids

    r = client.get("/me/reviews?role=reviewer", headers=headers(alice))
    assert str(writing.id) in {x["id"] for x in r.json()}
    assert str(receiving.id) not in {x["id"] for x in r.json()}
