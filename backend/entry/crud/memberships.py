from sqlalchemy.orm import Session

from entry.models.enums import MembershipStatusEnum, RoleEnum
from entry.models.memberships import Membership
from entry.tenancy.scoping import get_org_owned_or_404, scoped_query


def _normalize_role(role: RoleEnum | str) -> RoleEnum:
    if isinstance(role, RoleEnum):
        return role
    try:
        return RoleEnum(role)
    except ValueError as exc:
        raise ValueError("Invalid role.") from exc


def get_membership(db: Session, *, org_id: int, user_id: int) -> Membership | None:
    return (
        scoped_query(db, Membership, org_id)
        .filter(Membership.user_id == user_id)
        .first()
    )


def list_memberships(db: Session, org_id: int) -> list[Membership]:
    return scoped_query(db, Membership, org_id).order_by(Membership.id.asc()).all()


def create_membership(
    db: Session,
    *,
    org_id: int,
    user_id: int,
    role: RoleEnum | str,
    status: MembershipStatusEnum = MembershipStatusEnum.ACTIVE,
    created_by_user_id: int | None = None,
) -> Membership:
    membership = Membership(
        org_id=org_id,
        user_id=user_id,
        role=_normalize_role(role),
        status=status,
        created_by_user_id=created_by_user_id,
    )
    db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership


def remove_membership(db: Session, *, org_id: int, membership_id: int) -> None:
    membership = get_org_owned_or_404(db, Membership, org_id, membership_id)
    if membership.role == RoleEnum.OWNER:
        raise ValueError("The org owner cannot be removed.")
    db.delete(membership)
    db.commit()
