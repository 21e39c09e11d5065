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
from entry.crud.discounts import create_discount  # noqa: E402
from entry.models.enums import RoleEnum  # noqa: E402
from entry.models.memberships import Membership  # noqa: E402
from factories import PASSWORD, auth_headers, make_event, make_member, make_org, make_user  # noqa: E402


client = TestClient(app)


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_state()
    return SessionLocal


def test_signup_creates_user_org_and_owner_membership():
    SessionLocal = _setup_db(f"sqlite:///./auth_{uuid4().hex}.db")
    resp = client.post(
        "/auth/signup",
        json={"email": "Owner@Example.com", "password": "longenough", "org_name": "Night Owls"},
    )
    assert resp.status_code == 201
    payload = resp.json()
    assert payload["access_token"]
    assert payload["org"]["slug"] == "night-owls"
    assert payload["org"]["role"] == "owner"

    with SessionLocal() as db:
        membership = db.query(Membership).filter(Membership.user_id == payload["user_id"]).one()
        assert membership.role == RoleEnum.OWNER

    dup = client.post(
        "/auth/signup",
        json={"email": "owner@example.com", "password": "longenough", "org_name": "Other"},
    )
    assert dup.status_code == 409


def test_login_and_me():
    SessionLocal = _setup_db(f"sqlite:///./auth_{uuid4().hex}.db")
    with SessionLocal() as db:
        user = make_user(db, email="promoter@example.com")
        make_org(db, owner=user, name="Bass Club")

    bad = client.post("/auth/login", json={"email": "promoter@example.com", "password": "nope"})
    assert bad.status_code == 401

    resp = client.post("/auth/login", json={"email": "promoter@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["orgs"][0]["slug"] == "bass-club"


def test_org_header_is_required_and_scoped():
    SessionLocal = _setup_db(f"sqlite:///./auth_{uuid4().hex}.db")
    with SessionLocal() as db:
        owner_a = make_user(db)
        org_a = make_org(db, owner=owner_a)
        owner_b = make_user(db)
        org_b = make_org(db, owner=owner_b)
        event_b = make_event(db, org=org_b)
        event_b_id = event_b.id
        discount_b_id = create_discount(db, org_id=org_b.id, payload={"code": "ORGB", "value": 5}).id
        no_org = auth_headers(owner_a)
        wrong_org = auth_headers(owner_a, org_b)
        own_org = auth_headers(owner_a, org_a)

    assert client.get("/events", headers=no_org).status_code == 400

    # Not a member of org B.
    resp = client.get("/events", headers=wrong_org)
    assert resp.status_code == 404

    # Another org's event id looks like it does not exist.
    assert client.get(f"/events/{event_b_id}", headers=own_org).status_code == 404
    resp = client.patch(f"/discounts/{discount_b_id}", json={"value": 50}, headers=own_org)
    assert resp.status_code == 404
    assert resp.headers["X-Error-Code"] == "not_found"


def test_staff_cannot_use_admin_routes():
    SessionLocal = _setup_db(f"sqlite:///./auth_{uuid4().hex}.db")
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner)
        staff = make_member(db, org=org, role=RoleEnum.STAFF)
        headers = auth_headers(staff, org)

    assert client.get("/discounts", headers=headers).status_code == 200
    resp = client.post("/discounts", json={"code": "SAVE10", "type": "percentage", "value": 10}, headers=headers)
    assert resp.status_code == 403


def test_missing_or_bad_token_is_unauthorized():
    _setup_db(f"sqlite:///./auth_{uuid4().hex}.db")
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401
