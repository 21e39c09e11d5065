import os
from uuid import uuid4

import pytest
import stripe
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
from entry.crud.settings import SETTINGS_VAT, update_setting  # noqa: E402
from entry.models.discounts import Discount  # noqa: E402
from entry.models.enums import EventStatusEnum, OrderStatusEnum, PaymentMethodEnum, TicketStatusEnum  # noqa: E402
from entry.models.events import TicketType  # noqa: E402
from entry.models.orders import Order, Ticket  # noqa: E402
import entry.orders.service as order_service  # noqa: E402
from entry.orders.service import CustomerInput, OrderCreationError, PaymentInput, create_order  # noqa: E402
from entry.payments import gateway  # noqa: E402
from factories import auth_headers, make_event, make_order, make_org, make_ticket_type, make_user  # noqa: E402


client = TestClient(app)


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_state()
    return SessionLocal


def _seed(SessionLocal, **ticket_overrides):
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner, name="Bass Club")
        event = make_event(db, org=org)
        ticket_type = make_ticket_type(db, event=event, **ticket_overrides)
        return auth_headers(owner, org), org.id, event.id, ticket_type.id


def _order_payload(event_id, ticket_type_id, qty=2, **extra):
    payload = {
        "event_id": event_id,
        "items": [{"ticket_type_id": ticket_type_id, "qty": qty}],
        "customer": {"email": "Buyer@Example.com", "first_name": "Sam", "last_name": "Lee"},
        "send_email": False,
    }
    payload.update(extra)
    return payload


def test_admin_order_issues_tickets_and_sequential_numbers():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)

    resp = client.post("/api/v1/orders", json=_order_payload(event_id, tt_id), headers=headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["created"] is True
    order = body["order"]
    assert order["order_number"] == "BASS-00001"
    assert order["total"] == 40.0
    assert order["status"] == "completed"
    assert order["customer"]["email"] == "buyer@example.com"

    second = client.post("/orders", json=_order_payload(event_id, tt_id, qty=1), headers=headers)
    assert second.json()["order"]["order_number"] == "BASS-00002"

    with SessionLocal() as db:
        assert db.get(TicketType, tt_id).sold == 3
        tickets = db.query(Ticket).filter(Ticket.event_id == event_id).all()
        assert len(tickets) == 3
        assert len({t.ticket_code for t in tickets}) == 3
        assert all(t.ticket_code.startswith("BASS-") for t in tickets)


def test_admin_order_respects_capacity():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal, capacity=1)

    resp = client.post("/orders", json=_order_payload(event_id, tt_id, qty=2), headers=headers)
    assert resp.status_code == 400
    assert resp.headers["X-Error-Code"] == "checkout_failed"
    assert "Available: 1" in resp.json()["detail"]


def test_admin_order_rejected_for_cancelled_event():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner)
        event = make_event(db, org=org, status=EventStatusEnum.CANCELLED)
        tt = make_ticket_type(db, event=event)
        event_id, tt_id = event.id, tt.id
        headers = auth_headers(owner, org)

    resp = client.post("/orders", json=_order_payload(event_id, tt_id), headers=headers)
    assert resp.status_code == 400


def test_free_order_charges_nothing():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)

    resp = client.post(
        "/orders",
        json=_order_payload(event_id, tt_id, payment_method="free"),
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["order"]["total"] == 0.0
    assert resp.json()["order"]["payment_method"] == "free"


def test_create_order_is_idempotent_on_payment_ref():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    _headers, org_id, event_id, tt_id = _seed(SessionLocal)

    with SessionLocal() as db:
        event = db.get(TicketType, tt_id).event
        customer = CustomerInput(email="dup@example.com", first_name="Dup")
        payment = PaymentInput(method=PaymentMethodEnum.TEST, ref="TEST-REF-1")
        first = create_order(db, org_id, event, [{"ticket_type_id": tt_id, "qty": 1}], customer, payment, send_email=False)
        again = create_order(db, org_id, event, [{"ticket_type_id": tt_id, "qty": 1}], customer, payment, send_email=False)
        assert first.created is True
        assert again.created is False
        assert again.order.id == first.order.id
        assert db.query(Order).count() == 1
        assert db.get(TicketType, tt_id).sold == 1


def test_discount_and_exclusive_vat_are_applied():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    with SessionLocal() as db:
        discount = create_discount(db, org_id=org_id, payload={"code": "save10", "type": "percentage", "value": 10})
        discount_id = discount.id
        update_setting(
            db,
            org_id,
            SETTINGS_VAT,
            {"vat_registered": True, "vat_rate": 20, "prices_include_vat": False},
        )

    resp = client.post(
        "/orders",
        json=_order_payload(event_id, tt_id, discount_code="SAVE10"),
        headers=headers,
    )
    assert resp.status_code == 201
    order = resp.json()["order"]
    # 40.00 - 10% = 36.00, plus 20% VAT on top.
    assert order["total"] == 43.2
    assert order["metadata"]["discount_code"] == "SAVE10"
    assert order["metadata"]["vat_amount"] == 7.2
    assert order["metadata"]["vat_inclusive"] is False

    with SessionLocal() as db:
        assert db.get(Discount, discount_id).used_count == 1


def test_refund_releases_tickets_and_capacity():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        order = make_order(db, event=tt.event, ticket_type=tt, qty=2)
        order_id = order.id

    resp = client.post(f"/orders/{order_id}/refund", json={"reason": "Customer request"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    with SessionLocal() as db:
        order = db.get(Order, order_id)
        assert order.status == OrderStatusEnum.REFUNDED
        assert order.refund_reason == "Customer request"
        assert all(t.status == TicketStatusEnum.CANCELLED for t in order.tickets)
        assert db.get(TicketType, tt_id).sold == 0

    again = client.post(f"/orders/{order_id}/refund", json={}, headers=headers)
    assert again.status_code == 400
    assert again.headers["X-Error-Code"] == "refund_failed"


def test_stripe_refund_goes_through_gateway(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    calls = []

    def fake_refund(*, payment_intent, stripe_account=None):
        calls.append((payment_intent, stripe_account))
        return {"id": "re_123"}

    monkeypatch.setattr(gateway, "create_refund", fake_refund)
    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        result = create_order(
            db,
            org_id,
            tt.event,
            [{"ticket_type_id": tt_id, "qty": 1}],
            CustomerInput(email="card@example.com"),
            PaymentInput(method=PaymentMethodEnum.STRIPE, ref="pi_refund_me", total_charged=20.0),
            send_email=False,
        )
        order_id = result.order.id

    resp = client.post(f"/orders/{order_id}/refund", json={}, headers=headers)
    assert resp.status_code == 200
    assert calls == [("pi_refund_me", None)]


def test_order_number_collision_retries_then_gives_up(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    _headers, org_id, event_id, tt_id = _seed(SessionLocal)

    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        assert make_order(db, event=tt.event, ticket_type=tt).order_number == "BASS-00001"

        # Another request grabbed the same max() before this one inserted.
        monkeypatch.setattr(order_service, "next_order_sequence", lambda db, org_id: 1)
        assert make_order(db, event=tt.event, ticket_type=tt).order_number == "BASS-00002"
        assert make_order(db, event=tt.event, ticket_type=tt).order_number == "BASS-00003"

        with pytest.raises(OrderCreationError) as excinfo:
            make_order(db, event=tt.event, ticket_type=tt)
        assert excinfo.value.status_code == 503
        db.rollback()

        assert db.query(Order).count() == 3
        assert db.get(TicketType, tt_id).sold == 3


def test_concurrent_payment_ref_returns_existing_order(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    _headers, org_id, event_id, tt_id = _seed(SessionLocal)

    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        first = make_order(db, event=tt.event, ticket_type=tt, ref="pi_race", qty=2)

        # Both requests miss the lookup; the unique payment_ref decides.
        monkeypatch.setattr(order_service, "get_order_by_payment_ref", lambda db, org_id, ref: None)
        again = create_order(
            db,
            org_id,
            tt.event,
            [{"ticket_type_id": tt_id, "qty": 2}],
            CustomerInput(email="buyer@example.com"),
            PaymentInput(method=PaymentMethodEnum.TEST, ref="pi_race"),
            send_email=False,
        )
        assert again.created is False
        assert again.order.id == first.id
        assert db.query(Order).count() == 1
        assert db.query(Ticket).count() == 2
        assert db.get(TicketType, tt_id).sold == 2


def _stripe_order(SessionLocal, org_id, tt_id, ref):
    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        result = create_order(
            db,
            org_id,
            tt.event,
            [{"ticket_type_id": tt_id, "qty": 1}],
            CustomerInput(email="card@example.com"),
            PaymentInput(method=PaymentMethodEnum.STRIPE, ref=ref, total_charged=20.0),
            send_email=False,
        )
        return result.order.id


def test_stripe_refund_failure_leaves_order_untouched(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    order_id = _stripe_order(SessionLocal, org_id, tt_id, "pi_flaky")

    def failing_refund(*, payment_intent, stripe_account=None):
        raise stripe.error.APIConnectionError("Could not connect to Stripe")

    monkeypatch.setattr(gateway, "create_refund", failing_refund)
    resp = client.post(f"/orders/{order_id}/refund", json={"reason": "Duplicate"}, headers=headers)
    assert resp.status_code == 502
    assert resp.headers["X-Error-Code"] == "refund_failed"
    assert resp.json()["detail"].startswith("Stripe refund failed")

    with SessionLocal() as db:
        order = db.get(Order, order_id)
        assert order.status == OrderStatusEnum.COMPLETED
        assert order.refund_reason is None
        assert all(t.status != TicketStatusEnum.CANCELLED for t in order.tickets)
        assert db.get(TicketType, tt_id).sold == 1


def test_stripe_already_refunded_completes_local_refund(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    order_id = _stripe_order(SessionLocal, org_id, tt_id, "pi_half_done")

    def already_refunded(*, payment_intent, stripe_account=None):
        raise stripe.error.InvalidRequestError("Charge ch_123 has already been refunded.", None)

    monkeypatch.setattr(gateway, "create_refund", already_refunded)
    resp = client.post(f"/orders/{order_id}/refund", json={}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    with SessionLocal() as db:
        assert db.get(Order, order_id).status == OrderStatusEnum.REFUNDED
        assert db.get(TicketType, tt_id).sold == 0


def test_order_list_export_and_resend():
    SessionLocal = _setup_db(f"sqlite:///./orders_{uuid4().hex}.db")
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    with SessionLocal() as db:
        tt = db.get(TicketType, tt_id)
        order = make_order(db, event=tt.event, ticket_type=tt, qty=2, email="csv@example.com")
        order_id, order_number = order.id, order.order_number

    listed = client.get("/orders", params={"search": "csv@"}, headers=headers)
    assert listed.status_code == 200
    assert [o["id"] for o in listed.json()] == [order_id]

    export = client.get("/orders/export", params={"event_id": event_id}, headers=headers)
    assert export.status_code == 200
    assert "attachment" in export.headers["content-disposition"]
    rows = export.text.strip().splitlines()
    assert len(rows) == 3
    assert order_number in rows[1]

    resent = client.post(f"/orders/{order_id}/resend-email", headers=headers)
    assert resent.status_code == 200
    assert resent.json() == {"status": "skipped", "to": "csv@example.com"}
