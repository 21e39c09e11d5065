"""
FastAPI dependency helpers for org context and RBAC.
"""

from typing import Callable, Iterable, Optional
from uuid import uuid4

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.crud.memberships import get_membership
from entry.crud.organizations import resolve_org
from entry.models.enums import MembershipStatusEnum, RoleEnum
from entry.models.organizations import Organization
from entry.tenancy.context import RequestContext


ROLE_RANK = {
    RoleEnum.STAFF: 1,
    RoleEnum.ADMIN: 2,
    RoleEnum.OWNER: 3,
}


def org_hint_from_request(request: Request) -> Optional[str]:
    return request.headers.get(settings.ORG_HEADER_NAME) if request else None


def require_org_context(*, user_resolver: Optional[Callable] = None):
    """
    Dependency that enforces presence of an org header and an active membership.
    """

    if user_resolver is None:
        from entry.api.dependencies import get_current_user as user_resolver  # local import to avoid cycles

    def dependency(
        request: Request,
        db: Session = Depends(get_db),
        current_user=Depends(user_resolver),
    ) -> RequestContext:
        hint = org_hint_from_request(request)
        if not hint:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Organization must be provided via header",
            )
        org = resolve_org(db, hint)
        if org is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
        membership = get_membership(db, org_id=org.id, user_id=current_user.id)
        if not membership or membership.status != MembershipStatusEnum.ACTIVE:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization membership not found")
        request.state.org_id = org.id
        return RequestContext(
            request_id=getattr(request.state, "request_id", None) or str(uuid4()),
            org_id=org.id,
            org_slug=org.slug,
            user_id=current_user.id,
            email=current_user.email,
            role=membership.role,
        )

    return dependency


def require_org_role(
    roles: Iterable[RoleEnum | str],
    *,
    user_resolver: Optional[Callable] = None,
):
    """
    Dependency enforcing that the caller holds one of `roles` (or a higher one).
    """
    required = {role if isinstance(role, RoleEnum) else RoleEnum(role) for role in roles}
    min_rank = min((ROLE_RANK[role] for role in required), default=0)

    def dependency(
        ctx: RequestContext = Depends(require_org_context(user_resolver=user_resolver)),
    ) -> RequestContext:
        actual = ROLE_RANK.get(RoleEnum(ctx.role), 0) if ctx.role is not None else 0
        if actual < min_rank:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role for this operation")
        return ctx

    return dependency


def get_public_org(
    request: Request,
    db: Session = Depends(get_db),
) -> Organization:
    """
    Org for unauthenticated routes (checkout, event pages), from the same header.
    """
    hint = org_hint_from_request(request)
    if not hint:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Organization must be provided via header")
    org = resolve_org(db, hint)
    if org is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    request.state.org_id = org.id
    return org
