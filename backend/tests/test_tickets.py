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
from entry.models.enums import RoleEnum  # noqa: E402
from entry.models.orders import Ticket  # noqa: E402
from entry.orders.service import refund_order  # noqa: E402
from factories import auth_headers, make_event, make_member, make_order, make_org, make_ticket_type, make_user  # noqa: E402


client = TestClient(app)


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_state()
    return SessionLocal


def _seed(SessionLocal, *, qty=2, **ticket_overrides):
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner, name="Door Test")
        event = make_event(db, org=org)
        tt = make_ticket_type(db, event=event, **ticket_overrides)
        order = make_order(db, event=event, ticket_type=tt, qty=qty)
        codes = [t.ticket_code for t in order.tickets]
        staff = make_member(db, org=org, role=RoleEnum.STAFF)
        return {
            "admin": auth_headers(owner, org),
            "staff": auth_headers(staff, org),
            "public": {"X-Org-ID": org.slug},
            "event_id": event.id,
            "order_id": order.id,
            "codes": codes,
        }


def test_scan_marks_ticket_used_once():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    ctx = _seed(SessionLocal)
    code = ctx["codes"][0]

    first = client.post(f"/tickets/{code.lower()}/scan", json={"location": "Main door"}, headers=ctx["staff"])
    assert first.status_code == 200
    body = first.json()
    assert body["status"] == "valid"
    assert body["ticket_code"] == code
    assert body["holder_name"] == "Alex Buyer"
    assert body["scanned_at"] is not None

    second = client.post(f"/tickets/{code}/scan", json={}, headers=ctx["staff"])
    assert second.status_code == 409
    assert second.headers["X-Error-Code"] == "already_used"
    assert second.json()["status"] == "already_used"

    with SessionLocal() as db:
        ticket = db.query(Ticket).filter(Ticket.ticket_code == code).one()
        assert ticket.scan_location == "Main door"


def test_scan_unknown_and_wrong_event():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    ctx = _seed(SessionLocal)

    missing = client.post("/tickets/NOPE-12345678/scan", json={}, headers=ctx["staff"])
    assert missing.status_code == 404
    assert missing.json() == {"status": "invalid", "ticket_code": "NOPE-12345678", "error": "Ticket not found"}

    wrong = client.post(
        f"/tickets/{ctx['codes'][0]}/scan",
        json={"event_id": ctx["event_id"] + 999},
        headers=ctx["staff"],
    )
    assert wrong.status_code == 400
    assert wrong.headers["X-Error-Code"] == "wrong_event"


def test_refunded_ticket_cannot_be_scanned():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    ctx = _seed(SessionLocal)
    with SessionLocal() as db:
        ticket = db.query(Ticket).filter(Ticket.ticket_code == ctx["codes"][0]).one()
        refund_order(db, ticket.order, reason="test")

    resp = client.post(f"/tickets/{ctx['codes'][0]}/scan", json={}, headers=ctx["staff"])
    assert resp.status_code == 400
    assert resp.json()["status"] == "cancelled"


def test_merch_collection():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner)
        event = make_event(db, org=org)
        tt = make_ticket_type(db, event=event, includes_merch=True, merch_name="Tee", merch_sizes=["S", "M", "L"])
        plain = make_ticket_type(db, event=event, name="No Merch")
        merch_code = make_order(db, event=event, ticket_type=tt, merch_size="M").tickets[0].ticket_code
        plain_code = make_order(db, event=event, ticket_type=plain).tickets[0].ticket_code
        headers = auth_headers(owner, org)

    first = client.post(f"/tickets/{merch_code}/merch", headers=headers)
    assert first.status_code == 200
    assert first.json()["merch_collected"] is True
    assert first.json()["merch_size"] == "M"

    assert client.post(f"/tickets/{merch_code}/merch", headers=headers).status_code == 409
    assert client.post(f"/tickets/{plain_code}/merch", headers=headers).status_code == 400
    assert client.post("/tickets/NOPE-00000000/merch", headers=headers).status_code == 404


def test_qr_code_is_public_by_code():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    ctx = _seed(SessionLocal, qty=1)

    resp = client.get(f"/tickets/{ctx['codes'][0]}/qr.png", headers=ctx["public"])
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content[:8] == b"\x89PNG\r\n\x1a\n"

    assert client.get(f"/tickets/{ctx['codes'][0]}/qr.png").status_code == 400


def test_guest_list_check_in_never_exceeds_qty():
    SessionLocal = _setup_db(f"sqlite:///./tickets_{uuid4().hex}.db")
    ctx = _seed(SessionLocal, qty=1)

    created = client.post(
        f"/events/{ctx['event_id']}/guest-list",
        json={"name": "DJ Plus Ones", "qty": 3},
        headers=ctx["admin"],
    )
    assert created.status_code == 201
    entry_id = created.json()["id"]

    # Staff cannot add guests but can check them in.
    denied = client.post(f"/events/{ctx['event_id']}/guest-list", json={"name": "Sneaky"}, headers=ctx["staff"])
    assert denied.status_code == 403

    resp = client.post(f"/guest-list/{entry_id}/check-in", json={"count": 2}, headers=ctx["staff"])
    assert resp.json()["checked_in_count"] == 2
    assert resp.json()["checked_in"] is False

    resp = client.post(f"/guest-list/{entry_id}/check-in", json={"count": 5}, headers=ctx["staff"])
    assert resp.json()["checked_in_count"] == 3
    assert resp.json()["checked_in"] is True

    full = client.post(f"/guest-list/{entry_id}/check-in", json={}, headers=ctx["staff"])
    assert full.status_code == 409

    listing = client.get(f"/events/{ctx['event_id']}/guest-list", headers=ctx["staff"])
    assert listing.json()["summary"] == {"entries": 1, "total_guests": 3, "checked_in": 3}
