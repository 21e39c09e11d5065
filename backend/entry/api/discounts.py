from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.core.rate_limit import rate_limit
from entry.crud.discounts import (
    code_exists,
    create_discount,
    delete_discount,
    discount_amount,
    list_discounts,
    update_discount,
    validate_discount,
)
from entry.crud.events import get_event
from entry.models.discounts import Discount
from entry.models.enums import RoleEnum
from entry.models.organizations import Organization
from entry.schemas.discounts import (
    DiscountCreate,
    DiscountRead,
    DiscountUpdate,
    DiscountValidateRequest,
    DiscountValidateResponse,
    PublicDiscount,
)
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import get_public_org, require_org_context, require_org_role
from entry.tenancy.scoping import get_org_owned_or_404


router = APIRouter(tags=["discounts"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])

discount_limiter = rate_limit("discount_validate", settings.DISCOUNT_RATE_LIMIT, settings.DISCOUNT_RATE_WINDOW_SECONDS)


@router.get("/discounts", response_model=list[DiscountRead])
def get_discounts(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return list_discounts(db, ctx.org_id)


@router.post("/discounts", response_model=DiscountRead, status_code=status.HTTP_201_CREATED)
def post_discount(
    payload: DiscountCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    if code_exists(db, ctx.org_id, payload.code):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A discount with this code already exists")
    return create_discount(db, org_id=ctx.org_id, payload=payload.model_dump())


@router.patch("/discounts/{discount_id}", response_model=DiscountRead)
def patch_discount(
    discount_id: int,
    payload: DiscountUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    discount = get_org_owned_or_404(db, Discount, ctx.org_id, discount_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("code"):
        changes["code"] = changes["code"].strip().upper()
        if code_exists(db, ctx.org_id, changes["code"], exclude_id=discount.id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A discount with this code already exists")
    return update_discount(db, discount, changes=changes)


@router.delete("/discounts/{discount_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_discount(
    discount_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    delete_discount(db, get_org_owned_or_404(db, Discount, ctx.org_id, discount_id))


@router.post("/discounts/validate", response_model=DiscountValidateResponse)
def validate_code(
    payload: DiscountValidateRequest,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(discount_limiter),
):
    """Buyer-facing check. Always 200; the reason goes in `error`."""
    currency = settings.DEFAULT_CURRENCY
    if payload.event_id is not None:
        event = get_event(db, org.id, payload.event_id)
        if event is not None:
            currency = event.currency
    discount, error = validate_discount(
        db,
        org.id,
        payload.code,
        event_id=payload.event_id,
        subtotal=payload.subtotal,
        currency=currency.lower(),
    )
    if discount is None:
        return DiscountValidateResponse(valid=False, error=error)
    return DiscountValidateResponse(
        valid=True,
        discount=PublicDiscount(
            code=discount.code,
            type=discount.type,
            value=float(discount.value),
            amount_off=discount_amount(payload.subtotal, discount) if payload.subtotal is not None else None,
        ),
    )
