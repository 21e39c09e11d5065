from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from entry.core.time import utcnow
from entry.models.enums import (
    ClaimStatusEnum,
    ClaimTypeEnum,
    PointsSourceEnum,
    RewardStatusEnum,
    RewardTypeEnum,
)
from entry.models.reps import Rep, RepReward, RepRewardClaim
from entry.reps.points import award_points, deduct_points


logger = logging.getLogger(__name__)


class RewardClaimError(Exception):
    def __init__(self, message: str, status_code: int = 400, code: str = "reward_claim_failed"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def claim_reward(db: Session, rep: Rep, reward_id: int) -> RepRewardClaim:
    """
    Spend points on a points-shop reward.

    The reward and rep rows are locked for the duration so two concurrent
    claims cannot both pass the stock and balance checks. Everything commits
    together or not at all.
    """
    try:
        reward = (
            db.query(RepReward)
            .filter(RepReward.org_id == rep.org_id, RepReward.id == reward_id)
            .with_for_update()
            .first()
        )
        if reward is None:
            raise RewardClaimError("Reward not found", 404, "reward_not_found")
        if reward.reward_type != RewardTypeEnum.POINTS_SHOP:
            raise RewardClaimError(
                "This reward cannot be claimed via points. It is a milestone reward.",
                code="reward_not_claimable",
            )
        cost = reward.points_cost or 0
        if cost <= 0:
            raise RewardClaimError("This reward has no points cost configured", code="reward_no_cost")
        if reward.status != RewardStatusEnum.ACTIVE:
            raise RewardClaimError("This reward is no longer available", code="reward_inactive")
        if reward.total_available is not None and (reward.total_claimed or 0) >= reward.total_available:
            raise RewardClaimError("This reward is sold out", code="reward_sold_out")

        locked_rep = (
            db.query(Rep)
            .filter(Rep.org_id == rep.org_id, Rep.id == rep.id)
            .with_for_update()
            .first()
        )
        if locked_rep is None:
            raise RewardClaimError("Rep not found", 404, "rep_not_found")

        existing = (
            db.query(RepRewardClaim.id)
            .filter(
                RepRewardClaim.org_id == rep.org_id,
                RepRewardClaim.rep_id == rep.id,
                RepRewardClaim.reward_id == reward.id,
                RepRewardClaim.status != ClaimStatusEnum.CANCELLED,
            )
            .first()
        )
        if existing:
            raise RewardClaimError("You have already claimed this reward", code="reward_already_claimed")
        balance = locked_rep.points_balance or 0
        if balance < cost:
            raise RewardClaimError(
                f"Not enough balance. You have {balance} but this reward costs {cost}.",
                code="insufficient_balance",
            )

        deduct_points(
            db,
            locked_rep,
            points=cost,
            source_type=PointsSourceEnum.REWARD_SPEND,
            source_id=reward.id,
            description=f"Claimed reward: {reward.name}",
        )
        claim = RepRewardClaim(
            org_id=rep.org_id,
            rep_id=rep.id,
            reward_id=reward.id,
            claim_type=ClaimTypeEnum.POINTS_SHOP,
            points_spent=cost,
            status=ClaimStatusEnum.CLAIMED,
        )
        db.add(claim)
        reward.total_claimed = (reward.total_claimed or 0) + 1
        db.commit()
    except RewardClaimError:
        db.rollback()
        raise
    db.refresh(claim)
    logger.info("rep_reward.claimed", extra={"org_id": rep.org_id, "rep_id": rep.id, "reward_id": reward_id})
    return claim


def list_claims(db: Session, org_id: int, *, status: Optional[str] = None, rep_id: Optional[int] = None) -> list[RepRewardClaim]:
    query = db.query(RepRewardClaim).filter(RepRewardClaim.org_id == org_id)
    if status:
        query = query.filter(RepRewardClaim.status == status)
    if rep_id is not None:
        query = query.filter(RepRewardClaim.rep_id == rep_id)
    return query.order_by(RepRewardClaim.created_at.desc(), RepRewardClaim.id.desc()).all()


def _ensure_open(claim: RepRewardClaim) -> None:
    if claim.status != ClaimStatusEnum.CLAIMED:
        raise RewardClaimError(f"Claim is already {ClaimStatusEnum(claim.status).value}", code="claim_closed")


def fulfil_claim(db: Session, claim: RepRewardClaim, *, fulfilled_by: str, notes: Optional[str] = None) -> RepRewardClaim:
    _ensure_open(claim)
    claim.status = ClaimStatusEnum.FULFILLED
    claim.fulfilled_at = utcnow()
    claim.fulfilled_by = fulfilled_by
    if notes is not None:
        claim.notes = notes
    db.commit()
    db.refresh(claim)
    return claim


def cancel_claim(db: Session, claim: RepRewardClaim, *, cancelled_by: str, notes: Optional[str] = None) -> RepRewardClaim:
    """Cancel an open claim. Points-shop spend goes back to the rep."""
    _ensure_open(claim)
    claim.status = ClaimStatusEnum.CANCELLED
    if notes is not None:
        claim.notes = notes
    reward = claim.reward
    if reward is not None and (reward.total_claimed or 0) > 0:
        reward.total_claimed -= 1
    if claim.claim_type == ClaimTypeEnum.POINTS_SHOP and claim.points_spent:
        award_points(
            db,
            claim.rep,
            points=claim.points_spent,
            source_type=PointsSourceEnum.REVOCATION,
            source_id=claim.id,
            description=f"Refund for cancelled claim: {reward.name if reward else 'reward'}",
            created_by=cancelled_by,
        )
    db.commit()
    db.refresh(claim)
    return claim
