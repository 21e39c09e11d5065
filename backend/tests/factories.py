from uuid import uuid4

from entry.core.security import create_access_token, get_password_hash
from entry.crud.events import create_event, create_ticket_type
from entry.crud.memberships import create_membership
from entry.crud.organizations import create_org_with_owner
from entry.crud.users import create_user
from entry.models.enums import EventStatusEnum, MembershipStatusEnum, PaymentMethodEnum, RoleEnum
from entry.orders.service import CustomerInput, PaymentInput, create_order

PASSWORD = "correct-horse"


def make_user(db, *, email: str | None = None, is_platform_owner: bool = False):
    email = email or f"user_{uuid4().hex[:8]}@example.com"
    return create_user(
        db,
        email=email,
        password_hash=get_password_hash(PASSWORD),
        full_name="Test User",
        is_platform_owner=is_platform_owner,
    )


def make_org(db, *, owner, name: str | None = None, slug: str | None = None):
    name = name or f"Org {uuid4().hex[:6]}"
    org, _membership = create_org_with_owner(db, name=name, owner_user=owner, slug=slug)
    db.commit()
    db.refresh(org)
    return org


def make_member(db, *, org, role: RoleEnum = RoleEnum.STAFF, email: str | None = None):
    user = make_user(db, email=email)
    create_membership(
        db,
        org_id=org.id,
        user_id=user.id,
        role=role,
        status=MembershipStatusEnum.ACTIVE,
        created_by_user_id=org.created_by_user_id,
    )
    return user


def make_event(db, *, org, **overrides):
    payload = {
        "name": f"Event {uuid4().hex[:6]}",
        "status": EventStatusEnum.LIVE,
        "currency": "GBP",
        "payment_method": PaymentMethodEnum.TEST,
    }
    payload.update(overrides)
    return create_event(db, org_id=org.id, payload=payload)


def make_ticket_type(db, *, event, **overrides):
    payload = {"name": "General Admission", "price": 20.0, "capacity": 100}
    payload.update(overrides)
    return create_ticket_type(db, event=event, payload=payload)


def make_order(
    db,
    *,
    event,
    ticket_type,
    qty: int = 1,
    email: str = "buyer@example.com",
    merch_size: str | None = None,
    **kwargs,
):
    result = create_order(
        db,
        event.org_id,
        event,
        [{"ticket_type_id": ticket_type.id, "qty": qty, "merch_size": merch_size}],
        CustomerInput(email=email, first_name="Alex", last_name="Buyer"),
        PaymentInput(method=PaymentMethodEnum.TEST, ref=kwargs.pop("ref", f"TEST-{uuid4().hex[:10]}")),
        send_email=False,
        **kwargs,
    )
    return result.order


def auth_headers(user, org=None) -> dict[str, str]:
    token = create_access_token({"sub": user.email, "user_id": user.id})
    headers = {"Authorization": f"Bearer {token}"}
    if org is not None:
        headers["X-Org-ID"] = org.slug
    return headers
