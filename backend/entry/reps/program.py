"""
Rep program administration: invites, status changes, event assignment,
leaderboards and the numbers shown on the admin and rep dashboards.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from entry.core.codes import generate_token, rep_discount_code
from entry.core.security import get_password_hash
from entry.crud.discounts import code_exists, create_discount
from entry.crud.users import normalize_email
from entry.models.enums import (
    ClaimStatusEnum,
    DiscountTypeEnum,
    PointsSourceEnum,
    QuestStatusEnum,
    RepStatusEnum,
    SubmissionStatusEnum,
)
from entry.models.events import Event
from entry.models.reps import Rep, RepEvent, RepPointsLog, RepQuest, RepQuestSubmission, RepRewardClaim
from entry.reps.notifications import send_rep_email
from entry.reps.points import (
    award_points,
    get_rep_settings,
    level_name,
    next_level_points,
    send_level_up_email,
)
from entry.reps.quests import list_available_quests


logger = logging.getLogger(__name__)

LEADERBOARD_LIMIT = 50


class RepProgramError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_rep_by_email(db: Session, org_id: int, email: str) -> Optional[Rep]:
    return db.query(Rep).filter(Rep.org_id == org_id, Rep.email == normalize_email(email)).first()


def get_rep_by_invite_token(db: Session, org_id: int, token: str) -> Optional[Rep]:
    return db.query(Rep).filter(Rep.org_id == org_id, Rep.invite_token == token).first()


def list_reps(db: Session, org_id: int, *, status: Optional[str] = None) -> list[Rep]:
    query = db.query(Rep).filter(Rep.org_id == org_id)
    if status:
        query = query.filter(Rep.status == status)
    return query.order_by(Rep.created_at.desc(), Rep.id.desc()).all()


def create_rep(db: Session, *, org_id: int, payload: dict[str, Any], invite: bool = True) -> Rep:
    email = normalize_email(payload["email"])
    if get_rep_by_email(db, org_id, email):
        raise RepProgramError("A rep with this email already exists", 409)
    data = {key: value for key, value in payload.items() if key not in {"email", "password"}}
    rep = Rep(
        org_id=org_id,
        email=email,
        status=RepStatusEnum.PENDING,
        invite_token=generate_token() if invite else None,
        **data,
    )
    if payload.get("password"):
        rep.password_hash = get_password_hash(payload["password"])
    db.add(rep)
    db.commit()
    db.refresh(rep)
    return rep


def set_rep_status(db: Session, rep: Rep, status: RepStatusEnum | str) -> Rep:
    new_status = RepStatusEnum(status)
    was_active = rep.status == RepStatusEnum.ACTIVE
    rep.status = new_status
    db.commit()
    db.refresh(rep)
    if new_status == RepStatusEnum.ACTIVE and not was_active:
        send_rep_email(db, rep, "welcome", {})
    return rep


def update_rep(db: Session, rep: Rep, *, changes: dict[str, Any]) -> Rep:
    status = changes.pop("status", None)
    if changes.get("email"):
        changes["email"] = normalize_email(changes["email"])
    for key, value in changes.items():
        setattr(rep, key, value)
    db.commit()
    db.refresh(rep)
    if status is not None and RepStatusEnum(status) != rep.status:
        rep = set_rep_status(db, rep, status)
    return rep


def signup_rep(
    db: Session,
    *,
    org_id: int,
    email: str,
    password: str,
    first_name: str,
    last_name: Optional[str] = None,
    invite_token: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> Rep:
    """
    Rep self-signup. An invite token claims the pre-created rep row and
    activates it; open signup lands in pending unless the program auto-approves.
    """
    rep_settings = get_rep_settings(db, org_id)
    if not rep_settings.get("enabled", True):
        raise RepProgramError("The rep program is not accepting signups", 403)
    normalized = normalize_email(email)
    extra = extra or {}

    if invite_token:
        rep = get_rep_by_invite_token(db, org_id, invite_token)
        if rep is None:
            raise RepProgramError("Invalid or expired invite", 404)
        if rep.email != normalized and get_rep_by_email(db, org_id, normalized):
            raise RepProgramError("A rep with this email already exists", 409)
        rep.email = normalized
        rep.invite_token = None
        status = RepStatusEnum.ACTIVE
    else:
        if get_rep_by_email(db, org_id, normalized):
            raise RepProgramError("A rep with this email already exists", 409)
        rep = Rep(org_id=org_id, email=normalized, status=RepStatusEnum.PENDING)
        db.add(rep)
        status = RepStatusEnum.ACTIVE if rep_settings.get("auto_approve") else RepStatusEnum.PENDING

    rep.password_hash = get_password_hash(password)
    rep.first_name = first_name
    rep.last_name = last_name
    for key, value in extra.items():
        setattr(rep, key, value)
    rep.status = status
    db.commit()
    db.refresh(rep)
    if status == RepStatusEnum.ACTIVE:
        send_rep_email(db, rep, "welcome", {})
    return rep


def _unique_rep_code(db: Session, org_id: int, base: str) -> str:
    code = base
    suffix = 2
    while code_exists(db, org_id, code):
        code = f"{base}{suffix}"
        suffix += 1
    return code


def assign_rep_to_event(
    db: Session,
    rep: Rep,
    event: Event,
    *,
    discount_percent: Optional[float] = None,
) -> RepEvent:
    existing = (
        db.query(RepEvent)
        .filter(RepEvent.org_id == rep.org_id, RepEvent.rep_id == rep.id, RepEvent.event_id == event.id)
        .first()
    )
    if existing:
        raise RepProgramError("Rep is already assigned to this event", 409)
    rep_settings = get_rep_settings(db, rep.org_id)
    limit = rep_settings.get("max_events_per_rep")
    if limit:
        assigned = db.query(RepEvent).filter(RepEvent.org_id == rep.org_id, RepEvent.rep_id == rep.id).count()
        if assigned >= int(limit):
            raise RepProgramError(f"Reps can be assigned to at most {limit} events")

    percent = discount_percent if discount_percent is not None else rep_settings.get("default_discount_percent", 10)
    discount = create_discount(
        db,
        org_id=rep.org_id,
        payload={
            "code": _unique_rep_code(db, rep.org_id, rep_discount_code(rep.first_name, event.slug)),
            "description": f"Rep code for {rep.name} ({event.name})",
            "type": DiscountTypeEnum.PERCENTAGE,
            "value": percent,
            "applicable_event_ids": [event.id],
            "rep_id": rep.id,
        },
        commit=False,
    )
    rep_event = RepEvent(org_id=rep.org_id, rep_id=rep.id, event_id=event.id, discount_id=discount.id)
    db.add(rep_event)
    db.commit()
    db.refresh(rep_event)
    return rep_event


def adjust_points(db: Session, rep: Rep, *, points: int, reason: str, actor: str) -> int:
    if points == 0:
        raise RepProgramError("points must be non-zero")
    change = award_points(
        db,
        rep,
        points=points,
        source_type=PointsSourceEnum.MANUAL,
        description=reason,
        created_by=actor,
        floor_at_zero=True,
    )
    db.commit()
    send_level_up_email(db, rep, change)
    return change.balance


def leaderboard(
    db: Session,
    org_id: int,
    *,
    event_id: Optional[int] = None,
    limit: int = LEADERBOARD_LIMIT,
) -> list[dict[str, Any]]:
    if event_id is not None:
        rows = (
            db.query(RepEvent, Rep)
            .join(Rep, Rep.id == RepEvent.rep_id)
            .filter(
                RepEvent.org_id == org_id,
                RepEvent.event_id == event_id,
                Rep.status == RepStatusEnum.ACTIVE,
            )
            .order_by(RepEvent.revenue.desc(), RepEvent.sales_count.desc(), Rep.id.asc())
            .limit(limit)
            .all()
        )
        return [
            {
                "position": index,
                "rep_id": rep.id,
                "name": rep.name,
                "sales": rep_event.sales_count,
                "revenue": rep_event.revenue,
                "level": rep.level,
            }
            for index, (rep_event, rep) in enumerate(rows, start=1)
        ]
    reps = (
        db.query(Rep)
        .filter(Rep.org_id == org_id, Rep.status == RepStatusEnum.ACTIVE)
        .order_by(Rep.total_revenue.desc(), Rep.total_sales.desc(), Rep.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "position": index,
            "rep_id": rep.id,
            "name": rep.name,
            "sales": rep.total_sales,
            "revenue": rep.total_revenue,
            "level": rep.level,
        }
        for index, rep in enumerate(reps, start=1)
    ]


def leaderboard_position(db: Session, rep: Rep) -> Optional[int]:
    if rep.status != RepStatusEnum.ACTIVE:
        return None
    ahead = (
        db.query(func.count(Rep.id))
        .filter(
            Rep.org_id == rep.org_id,
            Rep.status == RepStatusEnum.ACTIVE,
            Rep.total_revenue > (rep.total_revenue or 0),
        )
        .scalar()
    )
    return int(ahead or 0) + 1


def program_stats(db: Session, org_id: int) -> dict[str, Any]:
    status_counts = dict(
        db.query(Rep.status, func.count(Rep.id)).filter(Rep.org_id == org_id).group_by(Rep.status).all()
    )
    totals = (
        db.query(func.coalesce(func.sum(Rep.total_sales), 0), func.coalesce(func.sum(Rep.total_revenue), 0))
        .filter(Rep.org_id == org_id)
        .one()
    )
    points_awarded = (
        db.query(func.coalesce(func.sum(RepPointsLog.points), 0))
        .filter(RepPointsLog.org_id == org_id, RepPointsLog.points > 0)
        .scalar()
    )
    pending_submissions = (
        db.query(func.count(RepQuestSubmission.id))
        .filter(
            RepQuestSubmission.org_id == org_id,
            RepQuestSubmission.status == SubmissionStatusEnum.PENDING,
        )
        .scalar()
    )
    open_claims = (
        db.query(func.count(RepRewardClaim.id))
        .filter(RepRewardClaim.org_id == org_id, RepRewardClaim.status == ClaimStatusEnum.CLAIMED)
        .scalar()
    )
    active_quests = (
        db.query(func.count(RepQuest.id))
        .filter(RepQuest.org_id == org_id, RepQuest.status == QuestStatusEnum.ACTIVE)
        .scalar()
    )
    return {
        "total_reps": sum(status_counts.values()),
        "active_reps": status_counts.get(RepStatusEnum.ACTIVE, 0),
        "pending_reps": status_counts.get(RepStatusEnum.PENDING, 0),
        "total_sales": int(totals[0] or 0),
        "total_revenue": round(float(totals[1] or 0), 2),
        "points_awarded": int(points_awarded or 0),
        "pending_submissions": int(pending_submissions or 0),
        "open_claims": int(open_claims or 0),
        "active_quests": int(active_quests or 0),
    }


def rep_dashboard(db: Session, rep: Rep) -> dict[str, Any]:
    rep_settings = get_rep_settings(db, rep.org_id)
    thresholds = rep_settings.get("level_thresholds")
    pending_rewards = (
        db.query(func.count(RepRewardClaim.id))
        .filter(
            RepRewardClaim.org_id == rep.org_id,
            RepRewardClaim.rep_id == rep.id,
            RepRewardClaim.status == ClaimStatusEnum.CLAIMED,
        )
        .scalar()
    )
    return {
        "rep_id": rep.id,
        "name": rep.name,
        "points_balance": rep.points_balance,
        "level": rep.level,
        "level_name": level_name(rep.level, rep_settings.get("level_names")),
        "next_level_points": next_level_points(rep.points_balance or 0, thresholds),
        "total_sales": rep.total_sales,
        "total_revenue": rep.total_revenue,
        "active_quests": len(list_available_quests(db, rep)),
        "pending_rewards": int(pending_rewards or 0),
        "leaderboard_position": leaderboard_position(db, rep),
    }
