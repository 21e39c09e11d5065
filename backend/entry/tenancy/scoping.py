"""
Helpers to ensure database access stays org-scoped.
"""

from sqlalchemy.orm import Session

from entry.tenancy.errors import OrgNotFound


def _ensure_model_has_org_id(model) -> None:
    if not hasattr(model, "org_id"):
        name = getattr(model, "__name__", str(model))
        raise ValueError(f"{name} does not define org_id and cannot be org-scoped.")


def scoped_query(db: Session, model, org_id):
    """
    Return a query constrained to the given org.

    Example:
        scoped_query(db, Event, org_id).all()
    """
    _ensure_model_has_org_id(model)
    return db.query(model).filter(model.org_id == org_id)


def get_org_owned_or_404(db: Session, model, org_id, object_id):
    """
    Fetch by id + org_id or raise OrgNotFound (404 style).
    """
    _ensure_model_has_org_id(model)
    resource = scoped_query(db, model, org_id).filter(model.id == object_id).first()
    if not resource:
        raise OrgNotFound(f"{model.__name__} not found")
    return resource
