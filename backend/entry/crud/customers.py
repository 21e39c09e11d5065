from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entry.crud.users import normalize_email
from entry.models.customers import Customer
from entry.models.enums import OrderStatusEnum
from entry.models.orders import Order
from entry.tenancy.scoping import scoped_query


def get_customer_by_email(db: Session, org_id: int, email: str) -> Customer | None:
    return scoped_query(db, Customer, org_id).filter(Customer.email == normalize_email(email)).first()


def upsert_customer(
    db: Session,
    *,
    org_id: int,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> Customer:
    """
    Find by (org, lowercased email) or insert. Names and phone are only
    filled in, never blanked, by a later purchase. Flushes, does not commit.
    """
    normalized = normalize_email(email)
    customer = get_customer_by_email(db, org_id, normalized)
    if customer is None:
        try:
            with db.begin_nested():
                customer = Customer(
                    org_id=org_id,
                    email=normalized,
                    first_name=first_name,
                    last_name=last_name,
                    phone=phone,
                )
                db.add(customer)
        except IntegrityError:
            customer = get_customer_by_email(db, org_id, normalized)
        else:
            return customer
    if first_name:
        customer.first_name = first_name
    if last_name:
        customer.last_name = last_name
    if phone:
        customer.phone = phone
    db.flush()
    return customer


def refresh_customer_stats(db: Session, customer: Customer) -> Customer:
    count, spent, first_at, last_at = (
        db.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total), 0),
            func.min(Order.created_at),
            func.max(Order.created_at),
        )
        .filter(
            Order.org_id == customer.org_id,
            Order.customer_id == customer.id,
            Order.status == OrderStatusEnum.COMPLETED,
        )
        .one()
    )
    customer.total_orders = int(count or 0)
    customer.total_spent = round(float(spent or 0), 2)
    customer.first_order_at = first_at
    customer.last_order_at = last_at
    db.flush()
    return customer


def list_customers(db: Session, org_id: int, *, search: str | None = None, limit: int = 100, offset: int = 0) -> list[Customer]:
    query = scoped_query(db, Customer, org_id)
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                Customer.email.like(like),
                func.lower(Customer.first_name).like(like),
                func.lower(Customer.last_name).like(like),
            )
        )
    return query.order_by(Customer.last_order_at.desc(), Customer.id.desc()).offset(offset).limit(limit).all()


def list_customer_orders(db: Session, customer: Customer) -> list[Order]:
    return (
        scoped_query(db, Order, customer.org_id)
        .filter(Order.customer_id == customer.id)
        .order_by(Order.created_at.desc())
        .all()
    )
