import os
from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from entry.main import app  # noqa: E402
import entry.core.db as db_module  # noqa: E402
from entry.core.db import Base  # noqa: E402
from entry.core.rate_limit import reset_state  # noqa: E402
from entry.crud.settings import SETTINGS_REPS, update_setting  # noqa: E402
from entry.models.enums import RepStatusEnum, RoleEnum  # noqa: E402
from entry.models.events import Event, TicketType  # noqa: E402
from entry.models.reps import Rep, RepEvent  # noqa: E402
from entry.reps.points import calculate_level, level_name, next_level_points  # noqa: E402
from factories import (  # noqa: E402
    auth_headers,
    make_event,
    make_member,
    make_order,
    make_org,
    make_ticket_type,
    make_user,
)


client = TestClient(app)


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_state()
    return SessionLocal


def _seed(SessionLocal):
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner, name="Rave Collective")
        staff = make_member(db, org=org, role=RoleEnum.STAFF)
        event = make_event(db, org=org, name="Summer Rave")
        tt = make_ticket_type(db, event=event)
        return {
            "admin": auth_headers(owner, org),
            "staff": auth_headers(staff, org),
            "public": {"X-Org-ID": org.slug},
            "org_id": org.id,
            "event_id": event.id,
            "tt_id": tt.id,
        }


def _active_rep(seed, email="jess@example.com"):
    """Invite a rep as admin and accept the invite through the portal."""
    invite = client.post(
        "/api/v1/reps",
        json={"email": email, "first_name": "Jess"},
        headers=seed["admin"],
    )
    assert invite.status_code == 201
    signup = client.post(
        "/api/v1/rep-portal/signup",
        json={
            "email": email,
            "password": "rep-password-1",
            "first_name": "Jess",
            "invite_token": invite.json()["invite_token"],
        },
        headers=seed["public"],
    )
    assert signup.status_code == 201
    body = signup.json()
    return body["rep"]["id"], {"Authorization": f"Bearer {body['access_token']}"}


def test_level_helpers():
    assert calculate_level(0) == 1
    assert calculate_level(99) == 1
    assert calculate_level(100) == 2
    assert calculate_level(10**6) == 10
    assert level_name(2) == "Starter"
    assert level_name(42) == "Level 42"
    assert next_level_points(40) == 60
    assert next_level_points(10**6) is None


def test_invite_and_signup_activates_rep():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    denied = client.post("/api/v1/reps", json={"email": "x@example.com", "first_name": "X"}, headers=seed["staff"])
    assert denied.status_code == 403

    invite = client.post("/api/v1/reps", json={"email": "Jess@Example.com", "first_name": "Jess"}, headers=seed["admin"])
    assert invite.status_code == 201
    body = invite.json()
    assert body["status"] == "pending"
    assert body["email"] == "jess@example.com"
    assert body["invite_url"].endswith(f"/rep/signup?invite={body['invite_token']}")

    duplicate = client.post("/api/v1/reps", json={"email": "jess@example.com", "first_name": "J"}, headers=seed["admin"])
    assert duplicate.status_code == 409
    assert duplicate.headers["X-Error-Code"] == "rep_program_error"

    bad_invite = client.post(
        "/api/v1/rep-portal/signup",
        json={"email": "jess@example.com", "password": "rep-password-1", "first_name": "Jess", "invite_token": "nope"},
        headers=seed["public"],
    )
    assert bad_invite.status_code == 404

    rep_id, rep_headers = _active_rep_from_invite(seed, body["invite_token"])
    me = client.get("/api/v1/rep-portal/me", headers=rep_headers)
    assert me.status_code == 200
    assert me.json()["id"] == rep_id
    assert me.json()["status"] == "active"

    login = client.post(
        "/api/v1/rep-portal/login",
        json={"email": "jess@example.com", "password": "rep-password-1"},
        headers=seed["public"],
    )
    assert login.status_code == 200
    assert login.json()["rep"]["id"] == rep_id

    wrong = client.post(
        "/api/v1/rep-portal/login",
        json={"email": "jess@example.com", "password": "not-it"},
        headers=seed["public"],
    )
    assert wrong.status_code == 401


def _active_rep_from_invite(seed, token):
    signup = client.post(
        "/api/v1/rep-portal/signup",
        json={"email": "jess@example.com", "password": "rep-password-1", "first_name": "Jess", "invite_token": token},
        headers=seed["public"],
    )
    assert signup.status_code == 201
    return signup.json()["rep"]["id"], {"Authorization": f"Bearer {signup.json()['access_token']}"}


def test_open_signup_waits_for_approval():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    signup = client.post(
        "/api/v1/rep-portal/signup",
        json={"email": "new@example.com", "password": "rep-password-1", "first_name": "Nia"},
        headers=seed["public"],
    )
    assert signup.status_code == 201
    assert signup.json()["access_token"] is None
    assert signup.json()["detail"] == "Your application is pending approval"
    rep_id = signup.json()["rep"]["id"]

    login = client.post(
        "/api/v1/rep-portal/login",
        json={"email": "new@example.com", "password": "rep-password-1"},
        headers=seed["public"],
    )
    assert login.status_code == 403

    approved = client.patch(f"/api/v1/reps/{rep_id}", json={"status": "active"}, headers=seed["admin"])
    assert approved.status_code == 200
    assert approved.json()["status"] == "active"

    login = client.post(
        "/api/v1/rep-portal/login",
        json={"email": "new@example.com", "password": "rep-password-1"},
        headers=seed["public"],
    )
    assert login.status_code == 200


def test_admin_token_is_not_a_rep_token():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    resp = client.get("/api/v1/rep-portal/me", headers=seed["admin"])
    assert resp.status_code == 401


def test_rep_sale_attribution_and_refund_reversal():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    rep_id, rep_headers = _active_rep(seed)

    assigned = client.post(f"/api/v1/reps/{rep_id}/events", json={"event_id": seed["event_id"]}, headers=seed["admin"])
    assert assigned.status_code == 201
    code = assigned.json()["discount_code"]
    assert code == "JESSSUMMERRAVE"

    again = client.post(f"/api/v1/reps/{rep_id}/events", json={"event_id": seed["event_id"]}, headers=seed["admin"])
    assert again.status_code == 409

    with SessionLocal() as db:
        event = db.get(Event, seed["event_id"])
        tt = db.get(TicketType, seed["tt_id"])
        order = make_order(db, event=event, ticket_type=tt, qty=2, discount_code=code.lower())
        order_id = order.id
        assert order.total == 36.0

        rep = db.get(Rep, rep_id)
        assert rep.points_balance == 20
        assert rep.total_sales == 2
        rep_event = db.query(RepEvent).filter(RepEvent.rep_id == rep_id).one()
        assert rep_event.sales_count == 2

    dashboard = client.get("/api/v1/rep-portal/dashboard", headers=rep_headers)
    assert dashboard.status_code == 200
    assert dashboard.json()["points_balance"] == 20
    assert dashboard.json()["leaderboard_position"] == 1

    my_events = client.get("/api/v1/rep-portal/events", headers=rep_headers).json()
    assert my_events[0]["sales_count"] == 2
    assert my_events[0]["discount_code"] == code

    notifications = client.get("/api/v1/rep-portal/notifications?unread_only=true", headers=rep_headers).json()
    assert [n["type"] for n in notifications] == ["sale_attributed"]
    marked = client.post("/api/v1/rep-portal/notifications/read", json={}, headers=rep_headers)
    assert marked.json() == {"updated": 1}

    board = client.get("/api/v1/reps/leaderboard", headers=seed["staff"]).json()
    assert board[0]["rep_id"] == rep_id
    assert board[0]["sales"] == 2

    refund = client.post(f"/api/v1/orders/{order_id}/refund", json={"reason": "Duplicate"}, headers=seed["admin"])
    assert refund.status_code == 200
    assert refund.json()["rep_reversal"]["points_deducted"] == 20

    with SessionLocal() as db:
        rep = db.get(Rep, rep_id)
        assert rep.points_balance == 0
        assert rep.total_sales == 0


def test_quest_submission_review_awards_points():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    rep_id, rep_headers = _active_rep(seed)

    quest = client.post(
        "/api/v1/reps/quests",
        json={"title": "Post the lineup", "points_reward": 50, "status": "active", "quest_type": "social_post"},
        headers=seed["admin"],
    )
    assert quest.status_code == 201
    quest_id = quest.json()["id"]

    available = client.get("/api/v1/rep-portal/quests", headers=rep_headers).json()
    assert [q["id"] for q in available] == [quest_id]

    bad_proof = client.post(
        f"/api/v1/rep-portal/quests/{quest_id}/submit",
        json={"proof_type": "url", "proof_url": "ftp://example.com/x"},
        headers=rep_headers,
    )
    assert bad_proof.status_code == 400
    assert bad_proof.headers["X-Error-Code"] == "quest_error"

    submitted = client.post(
        f"/api/v1/rep-portal/quests/{quest_id}/submit",
        json={"proof_type": "url", "proof_url": "https://instagram.com/p/abc"},
        headers=rep_headers,
    )
    assert submitted.status_code == 201
    submission_id = submitted.json()["id"]

    pending = client.get("/api/v1/reps/submissions?status=pending", headers=seed["staff"]).json()
    assert [s["id"] for s in pending] == [submission_id]

    no_reason = client.post(
        f"/api/v1/reps/submissions/{submission_id}/review",
        json={"status": "rejected"},
        headers=seed["admin"],
    )
    assert no_reason.status_code == 400

    approved = client.post(
        f"/api/v1/reps/submissions/{submission_id}/review",
        json={"status": "approved"},
        headers=seed["admin"],
    )
    assert approved.status_code == 200
    assert approved.json()["points_awarded"] == 50

    twice = client.post(
        f"/api/v1/reps/submissions/{submission_id}/review",
        json={"status": "approved"},
        headers=seed["admin"],
    )
    assert twice.status_code == 400

    history = client.get(f"/api/v1/reps/{rep_id}/points", headers=seed["staff"]).json()
    assert history[0]["points"] == 50
    assert history[0]["source_type"] == "quest"

    archived = client.delete(f"/api/v1/reps/quests/{quest_id}", headers=seed["admin"])
    assert archived.json()["status"] == "archived"
    assert client.get("/api/v1/rep-portal/quests", headers=rep_headers).json() == []


def test_quest_completion_limits_and_event_assignment():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    rep_id, rep_headers = _active_rep(seed)
    _other_id, other_headers = _active_rep(seed, email="sam@example.com")
    proof = {"proof_type": "text", "proof_text": "Shared in the group chat"}

    def _quest(**fields):
        body = {"title": "Spread the word", "points_reward": 10, "status": "active", "quest_type": "custom"}
        body.update(fields)
        resp = client.post("/api/v1/reps/quests", json=body, headers=seed["admin"])
        assert resp.status_code == 201
        return resp.json()["id"]

    def _submit(quest_id, headers):
        return client.post(f"/api/v1/rep-portal/quests/{quest_id}/submit", json=proof, headers=headers)

    once_each = _quest(max_completions=1)
    assert _submit(once_each, rep_headers).status_code == 201
    repeat = _submit(once_each, rep_headers)
    assert repeat.status_code == 400
    assert "maximum number of submissions" in repeat.json()["detail"]
    # The per-rep cap does not block other reps.
    assert _submit(once_each, other_headers).status_code == 201

    first_come = _quest(max_total=1)
    winner = _submit(first_come, rep_headers)
    assert winner.status_code == 201
    approved = client.post(
        f"/api/v1/reps/submissions/{winner.json()['id']}/review",
        json={"status": "approved"},
        headers=seed["admin"],
    )
    assert approved.status_code == 200
    late = _submit(first_come, other_headers)
    assert late.status_code == 400
    assert "maximum number of completions" in late.json()["detail"]

    event_quest = _quest(event_id=seed["event_id"])
    unassigned = _submit(event_quest, rep_headers)
    assert unassigned.status_code == 403
    assert unassigned.headers["X-Error-Code"] == "quest_error"

    assigned = client.post(f"/api/v1/reps/{rep_id}/events", json={"event_id": seed["event_id"]}, headers=seed["admin"])
    assert assigned.status_code == 201
    assert _submit(event_quest, rep_headers).status_code == 201


def test_points_shop_claim_and_cancel_refunds_points():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    rep_id, rep_headers = _active_rep(seed)

    adjusted = client.post(
        f"/api/v1/reps/{rep_id}/points",
        json={"points": 150, "reason": "Launch bonus"},
        headers=seed["admin"],
    )
    assert adjusted.status_code == 200
    assert adjusted.json() == {"rep_id": rep_id, "points_balance": 150, "level": 2}

    reward = client.post(
        "/api/v1/reps/rewards",
        json={"name": "Guestlist +1", "reward_type": "points_shop", "points_cost": 100, "total_available": 5},
        headers=seed["admin"],
    )
    assert reward.status_code == 201
    reward_id = reward.json()["id"]

    milestone_reward = client.post(
        "/api/v1/reps/rewards",
        json={"name": "Free hoodie", "reward_type": "milestone"},
        headers=seed["admin"],
    ).json()

    not_claimable = client.post(f"/api/v1/rep-portal/rewards/{milestone_reward['id']}/claim", headers=rep_headers)
    assert not_claimable.status_code == 400
    assert not_claimable.headers["X-Error-Code"] == "reward_not_claimable"

    claim = client.post(f"/api/v1/rep-portal/rewards/{reward_id}/claim", headers=rep_headers)
    assert claim.status_code == 201
    claim_id = claim.json()["id"]
    assert claim.json()["points_spent"] == 100

    repeat = client.post(f"/api/v1/rep-portal/rewards/{reward_id}/claim", headers=rep_headers)
    assert repeat.status_code == 400
    assert repeat.headers["X-Error-Code"] == "reward_already_claimed"

    assert client.get("/api/v1/rep-portal/me", headers=rep_headers).json()["points_balance"] == 50

    cancelled = client.post(f"/api/v1/reps/claims/{claim_id}/cancel", json={"notes": "Out of stock"}, headers=seed["admin"])
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.get("/api/v1/rep-portal/me", headers=rep_headers).json()["points_balance"] == 150

    closed = client.post(f"/api/v1/reps/claims/{claim_id}/fulfil", json={}, headers=seed["admin"])
    assert closed.status_code == 400
    assert closed.headers["X-Error-Code"] == "claim_closed"

    broke = client.post(
        "/api/v1/reps/rewards",
        json={"name": "VIP table", "reward_type": "points_shop", "points_cost": 1000},
        headers=seed["admin"],
    ).json()
    too_expensive = client.post(f"/api/v1/rep-portal/rewards/{broke['id']}/claim", headers=rep_headers)
    assert too_expensive.status_code == 400
    assert too_expensive.headers["X-Error-Code"] == "insufficient_balance"


def test_leaderboard_can_be_hidden_from_reps():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    _rep_id, rep_headers = _active_rep(seed)

    assert client.get("/api/v1/rep-portal/leaderboard", headers=rep_headers).status_code == 200
    with SessionLocal() as db:
        update_setting(db, seed["org_id"], SETTINGS_REPS, {"leaderboard_visible": False})
    assert client.get("/api/v1/rep-portal/leaderboard", headers=rep_headers).status_code == 403


def test_suspended_rep_loses_portal_access():
    SessionLocal = _setup_db(f"sqlite:///./reps_{uuid4().hex}.db")
    seed = _seed(SessionLocal)
    rep_id, rep_headers = _active_rep(seed)

    with SessionLocal() as db:
        rep = db.get(Rep, rep_id)
        rep.status = RepStatusEnum.SUSPENDED
        db.commit()

    assert client.get("/api/v1/rep-portal/me", headers=rep_headers).status_code == 403
