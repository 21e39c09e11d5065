"""
Rep points ledger.

A rep has one balance. Sales and quests add to it, the points shop spends
it, refunds take it back. Level is always recomputed from the balance, and
every change appends a RepPointsLog row carrying the balance after it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from entry.core.metrics import REP_POINTS_AWARDED_TOTAL
from entry.crud.settings import SETTINGS_REPS, get_setting
from entry.models.enums import PointsSourceEnum
from entry.models.reps import Rep, RepPointsLog
from entry.reps.notifications import create_notification, send_rep_email


DEFAULT_LEVEL_THRESHOLDS = [100, 300, 600, 1000, 1500, 2500, 4000, 6000, 10000]
DEFAULT_LEVEL_NAMES = [
    "Rookie",
    "Starter",
    "Rising",
    "Proven",
    "Veteran",
    "Elite",
    "Champion",
    "Legend",
    "Icon",
    "Mythic",
]

DEFAULT_REP_SETTINGS: dict[str, Any] = {
    "enabled": True,
    "points_per_sale": 10,
    "auto_approve": False,
    "default_discount_percent": 10,
    "default_discount_type": "percentage",
    "level_thresholds": DEFAULT_LEVEL_THRESHOLDS,
    "level_names": DEFAULT_LEVEL_NAMES,
    "leaderboard_visible": True,
    "max_events_per_rep": None,
    "welcome_message": None,
    "email_from_name": "Entry Reps",
}


@dataclass
class PointsChange:
    rep_id: int
    points: int
    balance: int
    old_level: int
    new_level: int

    @property
    def leveled_up(self) -> bool:
        return self.points > 0 and self.new_level > self.old_level


def get_rep_settings(db: Session, org_id: int) -> dict[str, Any]:
    return get_setting(db, org_id, SETTINGS_REPS, DEFAULT_REP_SETTINGS)


def calculate_level(points: int, thresholds: Optional[list[int]] = None) -> int:
    thresholds = DEFAULT_LEVEL_THRESHOLDS if thresholds is None else thresholds
    level = 1
    for threshold in thresholds:
        if points >= threshold:
            level += 1
        else:
            break
    return min(level, len(thresholds) + 1)


def level_name(level: int, names: Optional[list[str]] = None) -> str:
    names = DEFAULT_LEVEL_NAMES if names is None else names
    if 1 <= level <= len(names):
        return names[level - 1]
    return f"Level {level}"


def next_level_points(points: int, thresholds: Optional[list[int]] = None) -> Optional[int]:
    """Points still needed for the next level, or None at the top."""
    thresholds = DEFAULT_LEVEL_THRESHOLDS if thresholds is None else thresholds
    for threshold in thresholds:
        if points < threshold:
            return threshold - points
    return None


def award_points(
    db: Session,
    rep: Rep,
    *,
    points: int,
    source_type: PointsSourceEnum,
    description: str,
    source_id: str | int | None = None,
    created_by: str | None = None,
    rep_settings: Optional[dict[str, Any]] = None,
    floor_at_zero: bool = False,
) -> PointsChange:
    """
    Apply a signed points change, append the ledger entry and recompute level.

    Flushes but does not commit, so the caller decides the transaction
    boundary. A level-up adds an in-app notification in the same flush;
    the email is sent by the caller after commit (see send_level_up_email).
    """
    rep_settings = rep_settings or get_rep_settings(db, rep.org_id)
    old_level = rep.level or 1
    current = rep.points_balance or 0
    new_balance = current + points
    if floor_at_zero and new_balance < 0:
        points = -current
        new_balance = 0

    db.add(
        RepPointsLog(
            org_id=rep.org_id,
            rep_id=rep.id,
            points=points,
            balance_after=new_balance,
            source_type=source_type,
            source_id=str(source_id) if source_id is not None else None,
            description=description,
            created_by=created_by,
        )
    )
    rep.points_balance = new_balance
    rep.level = calculate_level(new_balance, rep_settings.get("level_thresholds"))
    change = PointsChange(
        rep_id=rep.id,
        points=points,
        balance=new_balance,
        old_level=old_level,
        new_level=rep.level,
    )
    if points > 0:
        REP_POINTS_AWARDED_TOTAL.labels(PointsSourceEnum(source_type).value).inc(points)
    if change.leveled_up:
        name = level_name(change.new_level, rep_settings.get("level_names"))
        create_notification(
            db,
            rep=rep,
            type="level_up",
            title="Level Up!",
            body=f"You're now Level {change.new_level}: {name}",
            link="/rep",
            metadata={"old_level": old_level, "new_level": change.new_level},
        )
    db.flush()
    return change


def deduct_points(db: Session, rep: Rep, *, points: int, **kwargs) -> PointsChange:
    return award_points(db, rep, points=-abs(points), **kwargs)


def points_history(db: Session, rep: Rep, *, limit: int = 50, offset: int = 0) -> list[RepPointsLog]:
    return (
        db.query(RepPointsLog)
        .filter(RepPointsLog.org_id == rep.org_id, RepPointsLog.rep_id == rep.id)
        .order_by(RepPointsLog.created_at.desc(), RepPointsLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def send_level_up_email(db: Session, rep: Rep, change: PointsChange, rep_settings: Optional[dict[str, Any]] = None) -> None:
    """Call after commit; does nothing unless the change crossed a level."""
    if not change.leveled_up:
        return
    names = (rep_settings or get_rep_settings(db, rep.org_id)).get("level_names")
    send_rep_email(
        db,
        rep,
        "level_up",
        {
            "old_level": change.old_level,
            "old_level_name": level_name(change.old_level, names),
            "new_level": change.new_level,
            "new_level_name": level_name(change.new_level, names),
        },
    )
