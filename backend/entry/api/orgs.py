# Org profile, team management and per-org settings (VAT, plan, reps,
# abandoned cart automation). Everything here is scoped by the org header.

import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from entry.billing.plans import get_org_plan, get_plans, update_org_plan
from entry.core.db import get_db
from entry.core.money import DEFAULT_VAT_SETTINGS, validate_vat_number
from entry.core.security import get_password_hash
from entry.crud.memberships import create_membership, get_membership, list_memberships, remove_membership
from entry.crud.organizations import get_org_by_id, update_org
from entry.crud.settings import (
    SETTINGS_ABANDONED_CARTS,
    SETTINGS_REPS,
    SETTINGS_VAT,
    get_setting,
    update_setting,
)
from entry.crud.users import create_user, get_user_by_email
from entry.emails.client import send_email
from entry.emails.templates import team_invite
from entry.models.enums import MembershipStatusEnum, RoleEnum
from entry.orders.carts import DEFAULT_AUTOMATION_SETTINGS
from entry.reps.points import DEFAULT_REP_SETTINGS
from entry.schemas.orgs import MemberDeleteResponse, MemberInvite, MemberRead, OrganizationRead, OrganizationUpdate
from entry.schemas.settings import (
    CartAutomationSettings,
    PlanRead,
    PlanUpdate,
    RepSettingsUpdate,
    VatSettings,
    VatSettingsUpdate,
)
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import require_org_context, require_org_role


router = APIRouter(tags=["orgs"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])
_owner = require_org_role([RoleEnum.OWNER])


def _member_read(membership) -> MemberRead:
    return MemberRead(
        membership_id=membership.id,
        user_id=membership.user_id,
        email=membership.user.email,
        full_name=membership.user.full_name,
        role=membership.role,
        status=membership.status,
        created_at=membership.created_at,
    )


@router.get("/org", response_model=OrganizationRead)
def get_org(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return get_org_by_id(db, ctx.org_id)


@router.patch("/org", response_model=OrganizationRead)
def patch_org(
    payload: OrganizationUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    org = get_org_by_id(db, ctx.org_id)
    return update_org(db, org, changes=payload.model_dump(exclude_unset=True))


@router.get("/team", response_model=list[MemberRead])
def list_team(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return [_member_read(m) for m in list_memberships(db, ctx.org_id)]


@router.post("/team", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
def invite_member(
    payload: MemberInvite,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    if payload.role == RoleEnum.OWNER:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Orgs have a single owner")
    user = get_user_by_email(db, payload.email)
    temporary_password = None
    if user is None:
        temporary_password = secrets.token_urlsafe(12)
        user = create_user(
            db,
            email=payload.email,
            password_hash=get_password_hash(temporary_password),
            full_name=payload.full_name,
        )
    elif get_membership(db, org_id=ctx.org_id, user_id=user.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already a member")
    membership = create_membership(
        db,
        org_id=ctx.org_id,
        user_id=user.id,
        role=payload.role,
        status=MembershipStatusEnum.INVITED if temporary_password else MembershipStatusEnum.ACTIVE,
        created_by_user_id=ctx.user_id,
    )
    org = get_org_by_id(db, ctx.org_id)
    send_email(
        db,
        team_invite(
            to_email=user.email,
            org_name=org.name,
            invited_by=ctx.actor,
            temporary_password=temporary_password,
        ),
        org_id=ctx.org_id,
    )
    return _member_read(membership)


@router.delete("/team/{membership_id}", response_model=MemberDeleteResponse)
def delete_member(
    membership_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    try:
        remove_membership(db, org_id=ctx.org_id, membership_id=membership_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return MemberDeleteResponse(success=True)


@router.get("/settings/vat", response_model=VatSettings)
def get_vat_settings(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return get_setting(db, ctx.org_id, SETTINGS_VAT, DEFAULT_VAT_SETTINGS)


@router.put("/settings/vat", response_model=VatSettings)
def put_vat_settings(
    payload: VatSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("vat_number"):
        cleaned = validate_vat_number(changes["vat_number"])
        if cleaned is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid VAT number format")
        changes["vat_number"] = cleaned
    update_setting(db, ctx.org_id, SETTINGS_VAT, changes)
    return get_setting(db, ctx.org_id, SETTINGS_VAT, DEFAULT_VAT_SETTINGS)


@router.get("/settings/reps")
def get_rep_settings(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return get_setting(db, ctx.org_id, SETTINGS_REPS, DEFAULT_REP_SETTINGS)


@router.put("/settings/reps")
def put_rep_settings(
    payload: RepSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    changes = payload.model_dump(exclude_unset=True)
    thresholds = changes.get("level_thresholds")
    if thresholds is not None and thresholds != sorted(thresholds):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="level_thresholds must be ascending")
    update_setting(db, ctx.org_id, SETTINGS_REPS, changes)
    return get_setting(db, ctx.org_id, SETTINGS_REPS, DEFAULT_REP_SETTINGS)


@router.get("/settings/abandoned-carts", response_model=CartAutomationSettings)
def get_cart_settings(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return get_setting(db, ctx.org_id, SETTINGS_ABANDONED_CARTS, DEFAULT_AUTOMATION_SETTINGS)


@router.put("/settings/abandoned-carts", response_model=CartAutomationSettings)
def put_cart_settings(
    payload: CartAutomationSettings,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    update_setting(db, ctx.org_id, SETTINGS_ABANDONED_CARTS, payload.model_dump())
    return get_setting(db, ctx.org_id, SETTINGS_ABANDONED_CARTS, DEFAULT_AUTOMATION_SETTINGS)


@router.get("/plans", response_model=list[PlanRead])
def list_plans():
    return list(get_plans().values())


@router.get("/plans/current", response_model=PlanRead)
def current_plan(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return get_org_plan(db, ctx.org_id)


@router.put("/plans/current", response_model=PlanRead)
def change_plan(
    payload: PlanUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_owner),
):
    try:
        return update_org_plan(db, ctx.org_id, payload.plan_id, assigned_by=ctx.actor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
