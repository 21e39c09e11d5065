"""Quests, rewards and milestones an org offers its reps."""

from typing import Optional

from sqlalchemy.orm import Session

from entry.models.enums import QuestStatusEnum, RewardStatusEnum
from entry.models.reps import RepMilestone, RepQuest, RepQuestSubmission, RepReward
from entry.tenancy.scoping import scoped_query


def _apply(db: Session, obj, changes: dict):
    for key, value in changes.items():
        setattr(obj, key, value)
    db.commit()
    db.refresh(obj)
    return obj


def list_quests(db: Session, org_id: int, *, status: Optional[str] = None) -> list[RepQuest]:
    query = scoped_query(db, RepQuest, org_id)
    if status:
        query = query.filter(RepQuest.status == status)
    return query.order_by(RepQuest.created_at.desc(), RepQuest.id.desc()).all()


def create_quest(db: Session, *, org_id: int, payload: dict) -> RepQuest:
    quest = RepQuest(org_id=org_id, **payload)
    db.add(quest)
    db.commit()
    db.refresh(quest)
    return quest


def update_quest(db: Session, quest: RepQuest, *, changes: dict) -> RepQuest:
    return _apply(db, quest, changes)


def archive_quest(db: Session, quest: RepQuest) -> RepQuest:
    # Submissions keep pointing at archived quests.
    return _apply(db, quest, {"status": QuestStatusEnum.ARCHIVED})


def list_submissions(
    db: Session,
    org_id: int,
    *,
    status: Optional[str] = None,
    quest_id: Optional[int] = None,
    rep_id: Optional[int] = None,
) -> list[RepQuestSubmission]:
    query = scoped_query(db, RepQuestSubmission, org_id)
    if status:
        query = query.filter(RepQuestSubmission.status == status)
    if quest_id is not None:
        query = query.filter(RepQuestSubmission.quest_id == quest_id)
    if rep_id is not None:
        query = query.filter(RepQuestSubmission.rep_id == rep_id)
    return query.order_by(RepQuestSubmission.created_at.desc(), RepQuestSubmission.id.desc()).all()


def list_rewards(db: Session, org_id: int, *, active_only: bool = False) -> list[RepReward]:
    query = scoped_query(db, RepReward, org_id)
    if active_only:
        query = query.filter(RepReward.status == RewardStatusEnum.ACTIVE)
    return query.order_by(RepReward.created_at.desc(), RepReward.id.desc()).all()


def create_reward(db: Session, *, org_id: int, payload: dict) -> RepReward:
    reward = RepReward(org_id=org_id, **payload)
    db.add(reward)
    db.commit()
    db.refresh(reward)
    return reward


def update_reward(db: Session, reward: RepReward, *, changes: dict) -> RepReward:
    return _apply(db, reward, changes)


def archive_reward(db: Session, reward: RepReward) -> RepReward:
    return _apply(db, reward, {"status": RewardStatusEnum.ARCHIVED})


def list_milestones(db: Session, org_id: int) -> list[RepMilestone]:
    return (
        scoped_query(db, RepMilestone, org_id)
        .order_by(RepMilestone.sort_order.asc(), RepMilestone.threshold_value.asc(), RepMilestone.id.asc())
        .all()
    )


def create_milestone(db: Session, *, org_id: int, payload: dict) -> RepMilestone:
    milestone = RepMilestone(org_id=org_id, **payload)
    db.add(milestone)
    db.commit()
    db.refresh(milestone)
    return milestone


def update_milestone(db: Session, milestone: RepMilestone, *, changes: dict) -> RepMilestone:
    return _apply(db, milestone, changes)


def delete_milestone(db: Session, milestone: RepMilestone) -> None:
    db.delete(milestone)
    db.commit()
