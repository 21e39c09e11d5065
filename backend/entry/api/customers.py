from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from entry.core.db import get_db
from entry.crud.customers import list_customer_orders, list_customers
from entry.models.customers import Customer
from entry.schemas.orders import CustomerDetail, CustomerRead
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import require_org_context
from entry.tenancy.scoping import get_org_owned_or_404


router = APIRouter(prefix="/customers", tags=["customers"])

_any_member = require_org_context()


@router.get("", response_model=list[CustomerRead])
def get_customers(
    search: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_customers(db, ctx.org_id, search=search, limit=limit, offset=offset)


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    customer = get_org_owned_or_404(db, Customer, ctx.org_id, customer_id)
    return {**CustomerRead.model_validate(customer).model_dump(), "orders": list_customer_orders(db, customer)}
