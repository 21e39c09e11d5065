"""
Crediting reps for sales made with their discount codes, and taking the
credit back when such an order is refunded.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from entry.core.money import format_amount, round_half_up
from entry.crud.discounts import get_discount_by_code
from entry.models.enums import (
    ClaimStatusEnum,
    ClaimTypeEnum,
    MilestoneTypeEnum,
    PointsSourceEnum,
    RepStatusEnum,
    RewardStatusEnum,
)
from entry.models.orders import Order
from entry.models.reps import Rep, RepEvent, RepMilestone, RepPointsLog, RepRewardClaim
from entry.reps.notifications import create_notification, send_rep_email
from entry.reps.points import award_points, deduct_points, get_rep_settings, send_level_up_email


logger = logging.getLogger(__name__)


def milestone_met(rep: Rep, milestone: RepMilestone) -> bool:
    milestone_type = MilestoneTypeEnum(milestone.milestone_type)
    if milestone_type == MilestoneTypeEnum.SALES_COUNT:
        return (rep.total_sales or 0) >= milestone.threshold_value
    if milestone_type == MilestoneTypeEnum.REVENUE:
        return float(rep.total_revenue or 0) >= milestone.threshold_value
    return (rep.points_balance or 0) >= milestone.threshold_value


def check_milestones(db: Session, rep: Rep, event_id: Optional[int] = None) -> list[RepMilestone]:
    """Auto-claim every milestone the rep now meets and has not claimed. Flushes only."""
    query = db.query(RepMilestone).filter(RepMilestone.org_id == rep.org_id)
    if event_id is not None:
        query = query.filter(or_(RepMilestone.event_id.is_(None), RepMilestone.event_id == event_id))
    else:
        query = query.filter(RepMilestone.event_id.is_(None))
    milestones = query.order_by(RepMilestone.sort_order.asc(), RepMilestone.id.asc()).all()

    claimed = {
        milestone_id
        for (milestone_id,) in db.query(RepRewardClaim.milestone_id).filter(
            RepRewardClaim.org_id == rep.org_id,
            RepRewardClaim.rep_id == rep.id,
            RepRewardClaim.claim_type == ClaimTypeEnum.MILESTONE,
            RepRewardClaim.status != ClaimStatusEnum.CANCELLED,
        )
    }

    unlocked = []
    for milestone in milestones:
        if milestone.id in claimed or not milestone_met(rep, milestone):
            continue
        reward = milestone.reward
        if reward is None or reward.status != RewardStatusEnum.ACTIVE:
            continue
        db.add(
            RepRewardClaim(
                org_id=rep.org_id,
                rep_id=rep.id,
                reward_id=reward.id,
                claim_type=ClaimTypeEnum.MILESTONE,
                milestone_id=milestone.id,
                points_spent=0,
                status=ClaimStatusEnum.CLAIMED,
            )
        )
        reward.total_claimed = (reward.total_claimed or 0) + 1
        create_notification(
            db,
            rep=rep,
            type="reward_unlocked",
            title="Reward Unlocked!",
            body=f"{reward.name}: {milestone.title}",
            link="/rep/rewards",
            metadata={"reward_id": reward.id, "milestone_id": milestone.id},
        )
        unlocked.append(milestone)
    db.flush()
    return unlocked


def revoke_unmet_milestones(db: Session, rep: Rep) -> int:
    """Cancel unfulfilled milestone claims the rep no longer qualifies for."""
    claims = (
        db.query(RepRewardClaim)
        .filter(
            RepRewardClaim.org_id == rep.org_id,
            RepRewardClaim.rep_id == rep.id,
            RepRewardClaim.claim_type == ClaimTypeEnum.MILESTONE,
            RepRewardClaim.status == ClaimStatusEnum.CLAIMED,
            RepRewardClaim.milestone_id.isnot(None),
        )
        .all()
    )
    cancelled = 0
    for claim in claims:
        milestone = db.get(RepMilestone, claim.milestone_id)
        if milestone is None or milestone_met(rep, milestone):
            continue
        claim.status = ClaimStatusEnum.CANCELLED
        claim.notes = "Auto-cancelled: refund dropped below threshold"
        if claim.reward and (claim.reward.total_claimed or 0) > 0:
            claim.reward.total_claimed -= 1
        cancelled += 1
    db.flush()
    return cancelled


def _rep_event(db: Session, rep: Rep, event_id: int) -> Optional[RepEvent]:
    return (
        db.query(RepEvent)
        .filter(RepEvent.org_id == rep.org_id, RepEvent.rep_id == rep.id, RepEvent.event_id == event_id)
        .first()
    )


def attribute_sale_to_rep(
    db: Session,
    order: Order,
    *,
    ticket_count: int,
    discount_code: Optional[str],
) -> Optional[dict[str, Any]]:
    """
    Credit the rep who owns `discount_code` for this order. Commits on
    success. Never raises: attribution must not break order creation.
    """
    if not discount_code:
        return None
    try:
        discount = get_discount_by_code(db, order.org_id, discount_code)
        if discount is None or discount.rep_id is None:
            return None
        rep = db.query(Rep).filter(Rep.org_id == order.org_id, Rep.id == discount.rep_id).first()
        if rep is None or rep.status != RepStatusEnum.ACTIVE:
            return None

        rep_settings = get_rep_settings(db, order.org_id)
        points = int(rep_settings.get("points_per_sale") or 0) * ticket_count
        plural = "s" if ticket_count != 1 else ""
        change = award_points(
            db,
            rep,
            points=points,
            source_type=PointsSourceEnum.SALE,
            source_id=order.id,
            description=f"Sale: {ticket_count} ticket{plural} ({format_amount(order.total, order.currency)})",
            rep_settings=rep_settings,
        )
        rep.total_sales = (rep.total_sales or 0) + ticket_count
        rep.total_revenue = round_half_up(float(rep.total_revenue or 0) + float(order.total or 0))

        rep_event = _rep_event(db, rep, order.event_id)
        if rep_event is not None:
            rep_event.sales_count = (rep_event.sales_count or 0) + ticket_count
            rep_event.revenue = round_half_up(float(rep_event.revenue or 0) + float(order.total or 0))

        order.metadata_json = {
            **(order.metadata_json or {}),
            "rep_id": rep.id,
            "rep_points_awarded": points,
        }
        create_notification(
            db,
            rep=rep,
            type="sale_attributed",
            title="Sale incoming!",
            body=f"{ticket_count} ticket{plural} sold: +{points} points",
            link="/rep/sales",
            metadata={"order_id": order.id, "ticket_count": ticket_count, "order_total": order.total},
        )
        unlocked = check_milestones(db, rep, order.event_id)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("rep_attribution.failed", extra={"org_id": order.org_id})
        return None

    logger.info(
        "rep_attribution.credited",
        extra={"org_id": order.org_id, "rep_id": rep.id, "points": points},
    )
    send_rep_email(
        db,
        rep,
        "sale_notification",
        {
            "ticket_count": ticket_count,
            "event_name": order.event.name if order.event else "",
            "discount_code": discount.code,
            "points": points,
            "points_balance": rep.points_balance,
            "order_total": format_amount(order.total, order.currency),
        },
    )
    send_level_up_email(db, rep, change, rep_settings)
    for milestone in unlocked:
        send_rep_email(
            db,
            rep,
            "reward_unlocked",
            {"reward_name": milestone.reward.name, "milestone_title": milestone.title},
        )
    return {"rep_id": rep.id, "points_awarded": points, "milestones_unlocked": len(unlocked)}


def reverse_rep_attribution(db: Session, order: Order) -> Optional[dict[str, Any]]:
    """
    Undo a sale credit inside the caller's transaction (flushes, no commit).

    Skipped when the order was never attributed or was already reversed.
    Never raises; a failed reversal is rolled back to its savepoint.
    """
    meta = order.metadata_json or {}
    rep_id = meta.get("rep_id")
    if not rep_id:
        return None
    already = (
        db.query(RepPointsLog.id)
        .filter(
            RepPointsLog.org_id == order.org_id,
            RepPointsLog.rep_id == rep_id,
            RepPointsLog.source_type == PointsSourceEnum.REFUND,
            RepPointsLog.source_id == str(order.id),
        )
        .first()
    )
    if already:
        return None

    try:
        with db.begin_nested():
            rep = db.query(Rep).filter(Rep.org_id == order.org_id, Rep.id == rep_id).first()
            if rep is None:
                return None
            awarded = int(meta.get("rep_points_awarded") or 0)
            change = deduct_points(
                db,
                rep,
                points=awarded,
                source_type=PointsSourceEnum.REFUND,
                source_id=order.id,
                description=f"Refund: order {order.order_number}",
                floor_at_zero=True,
            )
            ticket_count = sum(item.qty for item in order.items)
            rep.total_sales = max(0, (rep.total_sales or 0) - ticket_count)
            rep.total_revenue = max(0.0, round_half_up(float(rep.total_revenue or 0) - float(order.total or 0)))
            rep_event = _rep_event(db, rep, order.event_id)
            if rep_event is not None:
                rep_event.sales_count = max(0, (rep_event.sales_count or 0) - ticket_count)
                rep_event.revenue = max(0.0, round_half_up(float(rep_event.revenue or 0) - float(order.total or 0)))
            revoke_unmet_milestones(db, rep)
    except Exception:
        logger.exception("rep_attribution.reverse_failed", extra={"org_id": order.org_id, "rep_id": rep_id})
        return None

    return {"rep_id": rep.id, "rep_name": rep.name or "Unknown", "points_deducted": -change.points}
