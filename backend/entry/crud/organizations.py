from typing import Optional

from sqlalchemy.orm import Session

from entry.core.codes import normalize_prefix, slugify
from entry.models.enums import MembershipStatusEnum, RoleEnum
from entry.models.memberships import Membership
from entry.models.organizations import Organization
from entry.models.users import User


def get_org_by_id(db: Session, org_id: int) -> Organization | None:
    return (
        db.query(Organization)
        .filter(Organization.id == org_id, Organization.deleted_at.is_(None))
        .first()
    )


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    return (
        db.query(Organization)
        .filter(Organization.slug == slug, Organization.deleted_at.is_(None))
        .first()
    )


def resolve_org(db: Session, hint: str | None) -> Organization | None:
    """Accept either a numeric id or a slug, the way the org header is sent."""
    if not hint:
        return None
    value = hint.strip()
    if not value:
        return None
    if value.isdigit():
        return get_org_by_id(db, int(value))
    return get_org_by_slug(db, value)


def ensure_unique_slug(db: Session, base_slug: str, *, exclude_id: Optional[int] = None) -> str:
    slug = base_slug
    suffix = 2
    while True:
        query = db.query(Organization).filter(Organization.slug == slug)
        if exclude_id is not None:
            query = query.filter(Organization.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base_slug}-{suffix}"
        suffix += 1


def create_org_with_owner(
    db: Session,
    *,
    name: str,
    owner_user: User,
    slug: str | None = None,
    order_prefix: str | None = None,
) -> tuple[Organization, Membership]:
    unique_slug = ensure_unique_slug(db, slugify(slug or name))
    org = Organization(
        name=name,
        slug=unique_slug,
        order_prefix=normalize_prefix(order_prefix or unique_slug.split("-")[0]),
        created_by_user_id=owner_user.id,
    )
    db.add(org)
    db.flush()
    membership = Membership(
        org_id=org.id,
        user_id=owner_user.id,
        role=RoleEnum.OWNER,
        status=MembershipStatusEnum.ACTIVE,
        created_by_user_id=owner_user.id,
    )
    db.add(membership)
    db.flush()
    return org, membership


def update_org(db: Session, org: Organization, *, changes: dict) -> Organization:
    if "order_prefix" in changes and changes["order_prefix"] is not None:
        changes["order_prefix"] = normalize_prefix(changes["order_prefix"])
    for key, value in changes.items():
        setattr(org, key, value)
    db.commit()
    db.refresh(org)
    return org


def list_orgs_for_user(db: Session, user_id: int) -> list[tuple[Organization, RoleEnum]]:
    rows = (
        db.query(Organization, Membership.role)
        .join(Membership, Membership.org_id == Organization.id)
        .filter(
            Membership.user_id == user_id,
            Membership.status == MembershipStatusEnum.ACTIVE,
            Organization.deleted_at.is_(None),
        )
        .order_by(Organization.id.asc())
        .all()
    )
    return [(org, role) for org, role in rows]


def list_connected_orgs(db: Session) -> list[Organization]:
    return (
        db.query(Organization)
        .filter(Organization.stripe_account_id.isnot(None), Organization.deleted_at.is_(None))
        .order_by(Organization.id.asc())
        .all()
    )
