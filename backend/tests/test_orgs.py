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
from entry.models.email_logs import EmailLog  # noqa: E402
from entry.models.enums import EmailStatusEnum, RoleEnum  # noqa: E402
from entry.models.events import Event, TicketType  # noqa: E402
from factories import auth_headers, make_member, make_order, make_org, make_ticket_type, make_user  # noqa: E402


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
        org = make_org(db, owner=owner, name="Late Shift")
        admin = make_member(db, org=org, role=RoleEnum.ADMIN)
        staff = make_member(db, org=org, role=RoleEnum.STAFF)
        return {
            "owner": auth_headers(owner, org),
            "admin": auth_headers(admin, org),
            "staff": auth_headers(staff, org),
            "public": {"X-Org-ID": org.slug},
            "org_id": org.id,
        }


def test_org_profile_update():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    org = client.get("/api/v1/org", headers=seed["staff"]).json()
    assert org["slug"] == "late-shift"

    assert client.patch("/api/v1/org", json={"name": "Nope"}, headers=seed["staff"]).status_code == 403
    patched = client.patch(
        "/api/v1/org",
        json={"support_email": "help@lateshift.example.com", "order_prefix": "LATE"},
        headers=seed["admin"],
    )
    assert patched.status_code == 200
    assert patched.json()["support_email"] == "help@lateshift.example.com"
    assert patched.json()["order_prefix"] == "LATE"


def test_team_invite_and_removal():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    invited = client.post(
        "/api/v1/team",
        json={"email": "door@example.com", "role": "staff", "full_name": "Door Staff"},
        headers=seed["admin"],
    )
    assert invited.status_code == 201
    assert invited.json()["status"] == "invited"
    membership_id = invited.json()["membership_id"]

    with SessionLocal() as db:
        log = db.query(EmailLog).filter(EmailLog.to_email == "door@example.com").one()
        assert log.status == EmailStatusEnum.SKIPPED

    again = client.post("/api/v1/team", json={"email": "door@example.com"}, headers=seed["admin"])
    assert again.status_code == 409

    owner_role = client.post("/api/v1/team", json={"email": "boss@example.com", "role": "owner"}, headers=seed["admin"])
    assert owner_role.status_code == 400

    team = client.get("/api/v1/team", headers=seed["staff"]).json()
    assert len(team) == 4
    owner_membership = next(m for m in team if m["role"] == "owner")

    cannot = client.delete(f"/api/v1/team/{owner_membership['membership_id']}", headers=seed["admin"])
    assert cannot.status_code == 400
    assert cannot.json()["detail"] == "The org owner cannot be removed."

    removed = client.delete(f"/api/v1/team/{membership_id}", headers=seed["admin"])
    assert removed.json() == {"success": True}
    assert len(client.get("/api/v1/team", headers=seed["staff"]).json()) == 3


def test_vat_and_rep_settings():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    defaults = client.get("/api/v1/settings/vat", headers=seed["staff"]).json()
    assert defaults == {"vat_registered": False, "vat_number": "", "vat_rate": 20, "prices_include_vat": True}

    bad = client.put("/api/v1/settings/vat", json={"vat_number": "12345"}, headers=seed["admin"])
    assert bad.status_code == 400

    saved = client.put(
        "/api/v1/settings/vat",
        json={"vat_registered": True, "vat_number": "gb 123 456 789", "prices_include_vat": False},
        headers=seed["admin"],
    ).json()
    assert saved["vat_number"] == "GB123456789"
    assert saved["vat_rate"] == 20
    assert saved["prices_include_vat"] is False

    unordered = client.put("/api/v1/settings/reps", json={"level_thresholds": [50, 10]}, headers=seed["admin"])
    assert unordered.status_code == 400

    reps = client.put(
        "/api/v1/settings/reps",
        json={"auto_approve": True, "points_per_sale": 25},
        headers=seed["admin"],
    ).json()
    assert reps["auto_approve"] is True
    assert reps["points_per_sale"] == 25
    assert reps["leaderboard_visible"] is True


def test_cart_automation_settings_round_trip():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    assert client.get("/api/v1/settings/abandoned-carts", headers=seed["staff"]).json() == {"enabled": False, "steps": []}
    saved = client.put(
        "/api/v1/settings/abandoned-carts",
        json={"enabled": True, "steps": [{"delay_minutes": 30, "include_discount": True, "discount_code": "COMEBACK"}]},
        headers=seed["admin"],
    )
    assert saved.status_code == 200
    step = saved.json()["steps"][0]
    assert step["delay_minutes"] == 30
    assert step["enabled"] is True
    assert step["discount_code"] == "COMEBACK"


def test_plan_changes_are_owner_only():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    plans = client.get("/api/v1/plans").json()
    assert {plan["plan_id"] for plan in plans} >= {"starter", "pro"}
    assert client.get("/api/v1/plans/current", headers=seed["staff"]).json()["plan_id"] == "starter"

    assert client.put("/api/v1/plans/current", json={"plan_id": "pro"}, headers=seed["admin"]).status_code == 403
    assert client.put("/api/v1/plans/current", json={"plan_id": "gold"}, headers=seed["owner"]).status_code == 400

    changed = client.put("/api/v1/plans/current", json={"plan_id": "pro"}, headers=seed["owner"])
    assert changed.status_code == 200
    assert changed.json()["fee_percent"] == 2.0
    assert client.get("/api/v1/plans/current", headers=seed["staff"]).json()["plan_id"] == "pro"


def test_event_and_ticket_type_management():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    created = client.post(
        "/api/v1/events",
        json={"name": "Night Market", "status": "live", "currency": "gbp", "payment_method": "test"},
        headers=seed["admin"],
    )
    assert created.status_code == 201
    event_id = created.json()["id"]
    assert created.json()["slug"] == "night-market"
    assert created.json()["currency"] == "GBP"

    second = client.post("/api/v1/events", json={"name": "Night Market"}, headers=seed["admin"])
    assert second.json()["slug"] == "night-market-2"

    bad_limits = client.post(
        f"/api/v1/events/{event_id}/ticket-types",
        json={"name": "Group", "min_per_order": 6, "max_per_order": 4},
        headers=seed["admin"],
    )
    assert bad_limits.status_code == 400

    tt = client.post(
        f"/api/v1/events/{event_id}/ticket-types",
        json={"name": "Entry", "price": 10, "capacity": 2},
        headers=seed["admin"],
    ).json()

    with SessionLocal() as db:
        make_order(db, event=db.get(Event, event_id), ticket_type=db.get(TicketType, tt["id"]), qty=2)

    shrink = client.patch(f"/api/v1/ticket-types/{tt['id']}", json={"capacity": 1}, headers=seed["admin"])
    assert shrink.status_code == 400
    assert shrink.json()["detail"] == "Capacity cannot be lower than tickets already sold (2)"

    public = client.get("/api/v1/public/events/night-market", headers=seed["public"])
    assert public.status_code == 200
    assert public.json()["ticket_types"][0]["sold_out"] is True
    assert "capacity" not in public.json()["ticket_types"][0]

    assert client.get("/api/v1/public/events/night-market-2", headers=seed["public"]).status_code == 404

    cancelled = client.delete(f"/api/v1/events/{event_id}", headers=seed["admin"])
    assert cancelled.json()["status"] == "cancelled"


def test_public_event_hides_locked_sequential_tiers():
    SessionLocal = _setup_db(f"sqlite:///./orgs_{uuid4().hex}.db")
    seed = _seed(SessionLocal)

    event_id = client.post(
        "/api/v1/events",
        json={"name": "Tiered", "status": "live", "payment_method": "test", "group_release_mode": {"Early": "sequential"}},
        headers=seed["admin"],
    ).json()["id"]
    with SessionLocal() as db:
        event = db.get(Event, event_id)
        make_ticket_type(db, event=event, name="Tier 1", group_name="Early", capacity=1)
        make_ticket_type(db, event=event, name="Tier 2", group_name="Early", capacity=5)

    page = client.get("/api/v1/public/events/tiered", headers=seed["public"]).json()
    assert [t["name"] for t in page["ticket_types"]] == ["Tier 1"]
    assert [t["name"] for t in page["sequential_groups"]["Early"]] == ["Tier 1", "Tier 2"]
