import os
from types import SimpleNamespace
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
from entry.crud.discounts import apply_discount, discount_amount  # noqa: E402
from entry.models.enums import DiscountTypeEnum  # noqa: E402
from factories import auth_headers, make_event, make_org, make_user  # noqa: E402


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
        org = make_org(db, owner=owner)
        event = make_event(db, org=org)
        other_event = make_event(db, org=org)
        return auth_headers(owner, org), {"X-Org-ID": org.slug}, event.id, other_event.id


def _validate(public, **body):
    resp = client.post("/api/v1/discounts/validate", json=body, headers=public)
    assert resp.status_code == 200
    return resp.json()


def test_discount_amount_math():
    percent = SimpleNamespace(type=DiscountTypeEnum.PERCENTAGE, value=15)
    fixed = SimpleNamespace(type=DiscountTypeEnum.FIXED, value=50)
    assert discount_amount(40.0, percent) == 6.0
    assert discount_amount(20.0, fixed) == 20.0
    assert discount_amount(0, fixed) == 0.0
    assert discount_amount(10.0, None) == 0.0
    assert apply_discount(20.0, fixed) == 0.0


def test_discount_crud_normalises_code():
    SessionLocal = _setup_db(f"sqlite:///./discounts_{uuid4().hex}.db")
    admin, _public, _event_id, _other_id = _seed(SessionLocal)

    created = client.post("/api/v1/discounts", json={"code": " early20 ", "value": 20}, headers=admin)
    assert created.status_code == 201
    assert created.json()["code"] == "EARLY20"
    discount_id = created.json()["id"]

    duplicate = client.post("/api/v1/discounts", json={"code": "Early20", "value": 5}, headers=admin)
    assert duplicate.status_code == 409

    too_much = client.post("/api/v1/discounts", json={"code": "HALF", "value": 150}, headers=admin)
    assert too_much.status_code == 422

    patched = client.patch(f"/api/v1/discounts/{discount_id}", json={"value": 25}, headers=admin)
    assert patched.json()["value"] == 25

    assert client.delete(f"/api/v1/discounts/{discount_id}", headers=admin).status_code == 204
    assert client.get("/api/v1/discounts", headers=admin).json() == []


def test_validate_reports_reason_with_200():
    SessionLocal = _setup_db(f"sqlite:///./discounts_{uuid4().hex}.db")
    admin, public, event_id, other_id = _seed(SessionLocal)

    client.post(
        "/api/v1/discounts",
        json={"code": "ONLYONE", "value": 10, "applicable_event_ids": [event_id], "min_order_amount": 30},
        headers=admin,
    )
    client.post("/api/v1/discounts", json={"code": "OLD", "value": 10, "expires_at": "2000-01-01T00:00:00"}, headers=admin)
    client.post("/api/v1/discounts", json={"code": "PAUSED", "value": 10, "status": "inactive"}, headers=admin)

    assert _validate(public, code="") == {"valid": False, "discount": None, "error": "Please enter a discount code"}
    assert _validate(public, code="nope")["error"] == "Invalid discount code"
    assert _validate(public, code="paused")["error"] == "Invalid discount code"
    assert _validate(public, code="old")["error"] == "This discount code has expired"
    assert _validate(public, code="onlyone", event_id=other_id)["error"] == "This discount code is not valid for this event"
    assert _validate(public, code="onlyone", event_id=event_id, subtotal=20)["error"] == "Minimum order of £30.00 required"

    ok = _validate(public, code="onlyone", event_id=event_id, subtotal=40)
    assert ok["valid"] is True
    assert ok["discount"] == {"code": "ONLYONE", "type": "percentage", "value": 10.0, "amount_off": 4.0}


def test_validate_requires_org_header():
    _setup_db(f"sqlite:///./discounts_{uuid4().hex}.db")
    resp = client.post("/api/v1/discounts/validate", json={"code": "X"})
    assert resp.status_code == 400
