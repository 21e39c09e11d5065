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
from entry.core.config import settings  # noqa: E402
from entry.core.db import Base  # noqa: E402
from entry.core.rate_limit import reset_state  # noqa: E402
from entry.models.discounts import Discount  # noqa: E402
from entry.models.enums import (  # noqa: E402
    DiscountStatusEnum,
    DiscountTypeEnum,
    PaymentEventTypeEnum,
    PaymentMethodEnum,
    SeverityEnum,
)
from entry.models.events import TicketType  # noqa: E402
from entry.models.orders import Order  # noqa: E402
from entry.models.payment_events import PaymentEvent, WebhookEvent  # noqa: E402
from entry.payments import gateway  # noqa: E402
from factories import make_event, make_org, make_ticket_type, make_user  # noqa: E402


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
        org = make_org(db, owner=owner, name="Warehouse Nights")
        org.stripe_account_id = "acct_123"
        db.commit()
        event = make_event(db, org=org, payment_method=PaymentMethodEnum.STRIPE, platform_fee_percent=5.0)
        ticket_type = make_ticket_type(db, event=event, **ticket_overrides)
        return {"X-Org-ID": org.slug}, org.id, event.id, ticket_type.id


def _payload(event_id, ticket_type_id, qty=2, **extra):
    payload = {
        "event_id": event_id,
        "items": [{"ticket_type_id": ticket_type_id, "qty": qty}],
        "customer": {"email": "Fan@Example.com", "first_name": "Jo", "last_name": "Fan"},
    }
    payload.update(extra)
    return payload


class FakeGateway:
    def __init__(self):
        self.created = []
        self.intents = {}

    def create_payment_intent(self, **kwargs):
        intent_id = f"pi_{len(self.created) + 1}"
        self.created.append(kwargs)
        self.intents[intent_id] = {
            "id": intent_id,
            "status": "succeeded",
            "amount": kwargs["amount"],
            "amount_received": kwargs["amount"],
            "currency": kwargs["currency"],
            "metadata": kwargs["metadata"],
        }
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def retrieve_payment_intent(self, payment_intent_id, *, stripe_account=None):
        return self.intents[payment_intent_id]


def _install(monkeypatch) -> FakeGateway:
    fake = FakeGateway()
    monkeypatch.setattr(gateway, "create_payment_intent", fake.create_payment_intent)
    monkeypatch.setattr(gateway, "retrieve_payment_intent", fake.retrieve_payment_intent)
    return fake


def _payment_events(SessionLocal, event_type):
    with SessionLocal() as db:
        rows = db.query(PaymentEvent).filter(PaymentEvent.type == event_type).all()
        return [(row.error_code, row.severity, dict(row.metadata_json or {})) for row in rows]


def test_payment_intent_then_confirm_creates_order_once(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    fake = _install(monkeypatch)

    resp = client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_intent_id"] == "pi_1"
    assert body["client_secret"] == "pi_1_secret"
    assert body["amount"] == 4000
    assert body["currency"] == "gbp"
    assert body["stripe_account_id"] == "acct_123"
    assert body["application_fee"] == 200

    sent = fake.created[0]
    assert sent["stripe_account"] == "acct_123"
    assert sent["application_fee_amount"] == 200
    assert sent["metadata"]["org_id"] == str(org_id)
    assert sent["metadata"]["customer_email"] == "fan@example.com"

    confirm = {"payment_intent_id": "pi_1", "event_id": event_id}
    first = client.post("/api/v1/checkout/confirm-order", json=confirm, headers=headers)
    assert first.status_code == 200
    assert first.json()["created"] is True
    assert first.json()["order"]["total"] == 40.0
    assert len(first.json()["order"]["tickets"]) == 2

    second = client.post("/api/v1/checkout/confirm-order", json=confirm, headers=headers)
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["order"]["id"] == first.json()["order"]["id"]

    with SessionLocal() as db:
        assert db.query(Order).count() == 1
        assert db.get(TicketType, tt_id).sold == 2


def test_confirm_ignores_body_discount_and_customer(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, org_id, event_id, tt_id = _seed(SessionLocal)
    fake = _install(monkeypatch)
    with SessionLocal() as db:
        db.add(
            Discount(
                org_id=org_id,
                code="DEAD50",
                type=DiscountTypeEnum.PERCENTAGE,
                value=50,
                status=DiscountStatusEnum.INACTIVE,
                max_uses=1,
                used_count=1,
            )
        )
        db.commit()

    client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    resp = client.post(
        "/api/v1/checkout/confirm-order",
        json={
            "payment_intent_id": "pi_1",
            "event_id": event_id,
            "discount_code": "DEAD50",
            "customer": {"email": "someone-else@example.com", "first_name": "Mallory"},
        },
        headers=headers,
    )
    assert resp.status_code == 200
    assert fake.intents["pi_1"]["metadata"].get("discount_code") is None

    with SessionLocal() as db:
        order = db.query(Order).one()
        assert (order.metadata_json or {}).get("discount_code") is None
        assert order.total == 40.0
        assert order.customer.email == "fan@example.com"
        discount = db.query(Discount).filter(Discount.code == "DEAD50").one()
        assert discount.used_count == 1


def test_payment_intent_rejects_sold_out_and_logs_validation(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, event_id, tt_id = _seed(SessionLocal, capacity=1)
    fake = _install(monkeypatch)

    resp = client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    assert resp.status_code == 400
    assert resp.headers["X-Error-Code"] == "checkout_failed"
    assert fake.created == []

    logged = _payment_events(SessionLocal, PaymentEventTypeEnum.CHECKOUT_VALIDATION)
    assert len(logged) == 1
    assert logged[0][0] == "checkout_failed"
    assert logged[0][1] == SeverityEnum.INFO


def test_payment_intent_requires_stripe_event(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner)
        event = make_event(db, org=org)
        tt = make_ticket_type(db, event=event)
        headers, event_id, tt_id = {"X-Org-ID": org.slug}, event.id, tt.id
    _install(monkeypatch)

    resp = client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    assert resp.status_code == 400
    assert "Stripe" in resp.json()["detail"]


def test_confirm_incomplete_payment_logs_once(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, event_id, tt_id = _seed(SessionLocal)
    fake = _install(monkeypatch)

    client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    fake.intents["pi_1"]["status"] = "requires_payment_method"

    resp = client.post(
        "/api/v1/checkout/confirm-order",
        json=_payload(event_id, tt_id, payment_intent_id="pi_1"),
        headers=headers,
    )
    assert resp.status_code == 400
    assert "requires_payment_method" in resp.json()["detail"]

    incomplete = _payment_events(SessionLocal, PaymentEventTypeEnum.INCOMPLETE_PAYMENT)
    assert len(incomplete) == 1
    assert incomplete[0][0] == "requires_payment_method"
    assert _payment_events(SessionLocal, PaymentEventTypeEnum.CHECKOUT_VALIDATION) == []
    with SessionLocal() as db:
        assert db.query(Order).count() == 0


def test_confirm_rejects_intent_from_another_event(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, event_id, tt_id = _seed(SessionLocal)
    fake = _install(monkeypatch)

    client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id), headers=headers)
    fake.intents["pi_1"]["metadata"] = {**fake.intents["pi_1"]["metadata"], "event_id": "999"}

    resp = client.post(
        "/api/v1/checkout/confirm-order",
        json=_payload(event_id, tt_id, payment_intent_id="pi_1"),
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Payment does not belong to this event"


def test_checkout_rate_limit_returns_429_and_logs(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, _event_id, _tt_id = _seed(SessionLocal)
    _install(monkeypatch)

    payload = _payload(999999, 1)
    for _ in range(settings.CHECKOUT_RATE_LIMIT):
        assert client.post("/api/v1/checkout/payment-intent", json=payload, headers=headers).status_code == 404

    blocked = client.post("/api/v1/checkout/payment-intent", json=payload, headers=headers)
    assert blocked.status_code == 429
    assert "Retry-After" in blocked.headers
    assert len(_payment_events(SessionLocal, PaymentEventTypeEnum.RATE_LIMIT_HIT)) == 1


def test_client_error_report_is_recorded():
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, event_id, _tt_id = _seed(SessionLocal)

    resp = client.post(
        "/api/v1/payment-events/client",
        json={"event_id": event_id, "error_code": "card_element_failed", "error_message": "iframe blocked"},
        headers=headers,
    )
    assert resp.status_code == 202
    assert resp.json()["message"] == "iframe blocked"
    logged = _payment_events(SessionLocal, PaymentEventTypeEnum.CLIENT_CHECKOUT_ERROR)
    assert logged[0][0] == "card_element_failed"
    assert logged[0][1] == SeverityEnum.WARNING

    declined = client.post(
        "/api/v1/payment-events/client",
        json={"event_id": event_id, "error_code": "card_declined", "decline_code": "insufficient_funds"},
        headers=headers,
    )
    assert "Insufficient funds" in declined.json()["message"]


def _webhook(monkeypatch, event):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(gateway, "construct_event", lambda payload, sig, secret: event)
    return client.post("/api/v1/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=sig"})


def test_webhook_creates_order_when_browser_never_confirms(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    headers, _org_id, event_id, tt_id = _seed(SessionLocal)
    fake = _install(monkeypatch)
    client.post("/api/v1/checkout/payment-intent", json=_payload(event_id, tt_id, qty=3), headers=headers)

    event = {
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "account": "acct_123",
        "data": {"object": fake.intents["pi_1"]},
    }
    resp = _webhook(monkeypatch, event)
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    with SessionLocal() as db:
        order = db.query(Order).one()
        assert order.payment_ref == "pi_1"
        assert order.customer.email == "fan@example.com"
        assert len(order.tickets) == 3
        assert db.query(WebhookEvent).filter(WebhookEvent.stripe_event_id == "evt_1").count() == 1

    succeeded = _payment_events(SessionLocal, PaymentEventTypeEnum.PAYMENT_SUCCEEDED)
    assert succeeded[0][2]["order_created"] is True

    duplicate = _webhook(monkeypatch, event)
    assert duplicate.json() == {"received": True, "duplicate": True}

    # The browser arriving late still gets the same order.
    late = client.post(
        "/api/v1/checkout/confirm-order",
        json=_payload(event_id, tt_id, qty=3, payment_intent_id="pi_1"),
        headers=headers,
    )
    assert late.json()["created"] is False
    with SessionLocal() as db:
        assert db.query(Order).count() == 1


def test_webhook_payment_failed_logs_decline(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)
    _headers, org_id, event_id, _tt_id = _seed(SessionLocal)

    event = {
        "id": "evt_failed",
        "type": "payment_intent.payment_failed",
        "data": {
            "object": {
                "id": "pi_declined",
                "amount": 2000,
                "currency": "gbp",
                "metadata": {"org_id": str(org_id), "event_id": str(event_id), "customer_email": "x@example.com"},
                "last_payment_error": {"decline_code": "insufficient_funds", "message": "Your card has insufficient funds."},
            }
        },
    }
    resp = _webhook(monkeypatch, event)
    assert resp.status_code == 200

    failed = _payment_events(SessionLocal, PaymentEventTypeEnum.PAYMENT_FAILED)
    assert failed[0][0] == "insufficient_funds"
    assert failed[0][1] == SeverityEnum.WARNING
    with SessionLocal() as db:
        assert db.query(Order).count() == 0


def test_webhook_ignores_unhandled_and_foreign_events(monkeypatch):
    db_url = f"sqlite:///./checkout_{uuid4().hex}.db"
    SessionLocal = _setup_db(db_url)

    ignored = _webhook(monkeypatch, {"id": "evt_x", "type": "charge.refunded", "data": {"object": {}}})
    assert ignored.json() == {"received": True}

    foreign = _webhook(
        monkeypatch,
        {"id": "evt_y", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_z", "metadata": {}}}},
    )
    assert foreign.json() == {"received": True}
    with SessionLocal() as db:
        assert db.query(WebhookEvent).count() == 0


def test_webhook_requires_secret_and_signature(monkeypatch):
    _setup_db(f"sqlite:///./checkout_{uuid4().hex}.db")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "STRIPE_CONNECT_WEBHOOK_SECRET", None)
    assert client.post("/api/v1/stripe/webhook", content=b"{}").status_code == 400

    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    missing = client.post("/api/v1/stripe/webhook", content=b"{}")
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Missing Stripe signature"
