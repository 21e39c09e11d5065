from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.crud.rep_catalog import (
    archive_quest,
    archive_reward,
    create_milestone,
    create_quest,
    create_reward,
    delete_milestone,
    list_milestones,
    list_quests,
    list_rewards,
    list_submissions,
    update_milestone,
    update_quest,
    update_reward,
)
from entry.models.enums import RoleEnum
from entry.models.events import Event
from entry.models.reps import (
    Rep,
    RepMilestone,
    RepQuest,
    RepQuestSubmission,
    RepReward,
    RepRewardClaim,
)
from entry.reps.points import points_history
from entry.reps.program import (
    adjust_points,
    assign_rep_to_event,
    create_rep,
    leaderboard,
    list_reps,
    program_stats,
    update_rep,
)
from entry.reps.quests import review_submission
from entry.reps.rewards import cancel_claim, fulfil_claim, list_claims
from entry.schemas.reps import (
    ClaimAction,
    ClaimRead,
    LeaderboardEntry,
    MilestoneCreate,
    MilestoneRead,
    MilestoneUpdate,
    PointsAdjust,
    PointsLogRead,
    ProgramStats,
    QuestCreate,
    QuestRead,
    QuestUpdate,
    RepCreate,
    RepEventAssign,
    RepEventRead,
    RepInviteResponse,
    RepRead,
    RepUpdate,
    RewardCreate,
    RewardRead,
    RewardUpdate,
    SubmissionRead,
    SubmissionReview,
)
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import require_org_context, require_org_role
from entry.tenancy.scoping import get_org_owned_or_404


router = APIRouter(prefix="/reps", tags=["reps"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])


def _invite_url(rep: Rep) -> Optional[str]:
    if not rep.invite_token:
        return None
    return f"{settings.APP_BASE_URL.rstrip('/')}/rep/signup?invite={rep.invite_token}"


@router.get("", response_model=list[RepRead])
def get_reps(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_reps(db, ctx.org_id, status=status_filter)


@router.post("", response_model=RepInviteResponse, status_code=status.HTTP_201_CREATED)
def invite_rep(
    payload: RepCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    rep = create_rep(db, org_id=ctx.org_id, payload=payload.model_dump())
    return {
        **RepRead.model_validate(rep).model_dump(),
        "invite_token": rep.invite_token,
        "invite_url": _invite_url(rep),
    }


@router.get("/stats", response_model=ProgramStats)
def get_program_stats(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return program_stats(db, ctx.org_id)


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
def get_leaderboard(
    event_id: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return leaderboard(db, ctx.org_id, event_id=event_id)


# Quests


@router.get("/quests", response_model=list[QuestRead])
def get_quests(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_quests(db, ctx.org_id, status=status_filter)


@router.post("/quests", response_model=QuestRead, status_code=status.HTTP_201_CREATED)
def post_quest(
    payload: QuestCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    if payload.event_id is not None:
        get_org_owned_or_404(db, Event, ctx.org_id, payload.event_id)
    return create_quest(db, org_id=ctx.org_id, payload=payload.model_dump())


@router.patch("/quests/{quest_id}", response_model=QuestRead)
def patch_quest(
    quest_id: int,
    payload: QuestUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    quest = get_org_owned_or_404(db, RepQuest, ctx.org_id, quest_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("event_id") is not None:
        get_org_owned_or_404(db, Event, ctx.org_id, changes["event_id"])
    return update_quest(db, quest, changes=changes)


@router.delete("/quests/{quest_id}", response_model=QuestRead)
def delete_quest(
    quest_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    return archive_quest(db, get_org_owned_or_404(db, RepQuest, ctx.org_id, quest_id))


@router.get("/submissions", response_model=list[SubmissionRead])
def get_submissions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    quest_id: Optional[int] = None,
    rep_id: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_submissions(db, ctx.org_id, status=status_filter, quest_id=quest_id, rep_id=rep_id)


@router.post("/submissions/{submission_id}/review", response_model=SubmissionRead)
def post_review(
    submission_id: int,
    payload: SubmissionReview,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    submission = get_org_owned_or_404(db, RepQuestSubmission, ctx.org_id, submission_id)
    return review_submission(
        db,
        submission,
        status=payload.status,
        reviewed_by=ctx.actor,
        rejection_reason=payload.rejection_reason,
    )


# Rewards and milestones


@router.get("/rewards", response_model=list[RewardRead])
def get_rewards(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return list_rewards(db, ctx.org_id)


@router.post("/rewards", response_model=RewardRead, status_code=status.HTTP_201_CREATED)
def post_reward(
    payload: RewardCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    return create_reward(db, org_id=ctx.org_id, payload=payload.model_dump())


@router.patch("/rewards/{reward_id}", response_model=RewardRead)
def patch_reward(
    reward_id: int,
    payload: RewardUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    reward = get_org_owned_or_404(db, RepReward, ctx.org_id, reward_id)
    return update_reward(db, reward, changes=payload.model_dump(exclude_unset=True))


@router.delete("/rewards/{reward_id}", response_model=RewardRead)
def delete_reward(
    reward_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    return archive_reward(db, get_org_owned_or_404(db, RepReward, ctx.org_id, reward_id))


@router.get("/milestones", response_model=list[MilestoneRead])
def get_milestones(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return list_milestones(db, ctx.org_id)


@router.post("/milestones", response_model=MilestoneRead, status_code=status.HTTP_201_CREATED)
def post_milestone(
    payload: MilestoneCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    get_org_owned_or_404(db, RepReward, ctx.org_id, payload.reward_id)
    if payload.event_id is not None:
        get_org_owned_or_404(db, Event, ctx.org_id, payload.event_id)
    return create_milestone(db, org_id=ctx.org_id, payload=payload.model_dump())


@router.patch("/milestones/{milestone_id}", response_model=MilestoneRead)
def patch_milestone(
    milestone_id: int,
    payload: MilestoneUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    milestone = get_org_owned_or_404(db, RepMilestone, ctx.org_id, milestone_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("event_id") is not None:
        get_org_owned_or_404(db, Event, ctx.org_id, changes["event_id"])
    return update_milestone(db, milestone, changes=changes)


@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_milestone(
    milestone_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    delete_milestone(db, get_org_owned_or_404(db, RepMilestone, ctx.org_id, milestone_id))


@router.get("/claims", response_model=list[ClaimRead])
def get_claims(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    rep_id: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_claims(db, ctx.org_id, status=status_filter, rep_id=rep_id)


@router.post("/claims/{claim_id}/fulfil", response_model=ClaimRead)
def post_fulfil(
    claim_id: int,
    payload: ClaimAction,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    claim = get_org_owned_or_404(db, RepRewardClaim, ctx.org_id, claim_id)
    return fulfil_claim(db, claim, fulfilled_by=ctx.actor, notes=payload.notes)


@router.post("/claims/{claim_id}/cancel", response_model=ClaimRead)
def post_cancel(
    claim_id: int,
    payload: ClaimAction,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    """Cancelling refunds the points for points-shop claims."""
    claim = get_org_owned_or_404(db, RepRewardClaim, ctx.org_id, claim_id)
    return cancel_claim(db, claim, cancelled_by=ctx.actor, notes=payload.notes)


# Single rep. Declared last so the static paths above win.


@router.get("/{rep_id}", response_model=RepInviteResponse)
def get_rep_detail(
    rep_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    rep = get_org_owned_or_404(db, Rep, ctx.org_id, rep_id)
    return {
        **RepRead.model_validate(rep).model_dump(),
        "invite_token": rep.invite_token,
        "invite_url": _invite_url(rep),
    }


@router.patch("/{rep_id}", response_model=RepRead)
def patch_rep(
    rep_id: int,
    payload: RepUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    rep = get_org_owned_or_404(db, Rep, ctx.org_id, rep_id)
    return update_rep(db, rep, changes=payload.model_dump(exclude_unset=True))


@router.post("/{rep_id}/events", response_model=RepEventRead, status_code=status.HTTP_201_CREATED)
def post_rep_event(
    rep_id: int,
    payload: RepEventAssign,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    rep = get_org_owned_or_404(db, Rep, ctx.org_id, rep_id)
    event = get_org_owned_or_404(db, Event, ctx.org_id, payload.event_id)
    rep_event = assign_rep_to_event(db, rep, event, discount_percent=payload.discount_percent)
    return {
        "id": rep_event.id,
        "rep_id": rep_event.rep_id,
        "event_id": rep_event.event_id,
        "discount_id": rep_event.discount_id,
        "sales_count": rep_event.sales_count or 0,
        "revenue": rep_event.revenue or 0,
        "discount_code": rep_event.discount.code if rep_event.discount else None,
    }


@router.post("/{rep_id}/points")
def post_points(
    rep_id: int,
    payload: PointsAdjust,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    rep = get_org_owned_or_404(db, Rep, ctx.org_id, rep_id)
    balance = adjust_points(db, rep, points=payload.points, reason=payload.reason, actor=ctx.actor)
    return {"rep_id": rep.id, "points_balance": balance, "level": rep.level}


@router.get("/{rep_id}/points", response_model=list[PointsLogRead])
def get_points(
    rep_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    rep = get_org_owned_or_404(db, Rep, ctx.org_id, rep_id)
    return points_history(db, rep, limit=limit, offset=offset)
