# Rep-facing portal. Reps authenticate with their own password and a
# rep-scoped token; admin tokens are not accepted here and vice versa.

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from entry.api.dependencies import get_current_rep
from entry.core.config import settings
from entry.core.db import get_db
from entry.core.rate_limit import rate_limit
from entry.core.security import create_rep_token, verify_password
from entry.crud.rep_catalog import list_rewards
from entry.models.enums import RepStatusEnum
from entry.models.organizations import Organization
from entry.models.reps import Rep, RepEvent
from entry.reps.notifications import list_notifications, mark_notifications_read
from entry.reps.points import get_rep_settings, points_history
from entry.reps.program import get_rep_by_email, leaderboard, rep_dashboard, signup_rep
from entry.reps.quests import list_available_quests, submit_quest
from entry.reps.rewards import claim_reward, list_claims
from entry.schemas.reps import (
    ClaimRead,
    LeaderboardEntry,
    MarkReadRequest,
    NotificationRead,
    PointsLogRead,
    QuestRead,
    RepDashboard,
    RepEventRead,
    RepLogin,
    RepRead,
    RepSignup,
    RepSignupResponse,
    RepTokenResponse,
    RewardRead,
    SubmissionCreate,
    SubmissionRead,
)
from entry.tenancy.dependencies import get_public_org


router = APIRouter(prefix="/rep-portal", tags=["rep-portal"])

rep_auth_limiter = rate_limit("rep_auth", settings.AUTH_RATE_LIMIT, settings.AUTH_RATE_WINDOW_SECONDS)


@router.post("/signup", response_model=RepSignupResponse, status_code=status.HTTP_201_CREATED)
def signup(
    payload: RepSignup,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(rep_auth_limiter),
):
    rep = signup_rep(
        db,
        org_id=org.id,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        invite_token=payload.invite_token,
        extra=payload.model_dump(include={"phone", "instagram", "tiktok"}, exclude_none=True),
    )
    if rep.status == RepStatusEnum.ACTIVE:
        return {"rep": rep, "access_token": create_rep_token(rep_id=rep.id, org_id=rep.org_id)}
    return {"rep": rep, "detail": "Your application is pending approval"}


@router.post("/login", response_model=RepTokenResponse)
def login(
    payload: RepLogin,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(rep_auth_limiter),
):
    rep = get_rep_by_email(db, org.id, payload.email)
    if rep is None or not verify_password(payload.password, rep.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if rep.status != RepStatusEnum.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rep account is not active")
    return {"access_token": create_rep_token(rep_id=rep.id, org_id=rep.org_id), "rep": rep}


@router.get("/me", response_model=RepRead)
def me(rep: Rep = Depends(get_current_rep)):
    return rep


@router.get("/dashboard", response_model=RepDashboard)
def dashboard(db: Session = Depends(get_db), rep: Rep = Depends(get_current_rep)):
    return rep_dashboard(db, rep)


@router.get("/events", response_model=list[RepEventRead])
def my_events(db: Session = Depends(get_db), rep: Rep = Depends(get_current_rep)):
    rows = (
        db.query(RepEvent)
        .filter(RepEvent.org_id == rep.org_id, RepEvent.rep_id == rep.id)
        .order_by(RepEvent.created_at.desc())
        .all()
    )
    return [
        {
            "id": row.id,
            "rep_id": row.rep_id,
            "event_id": row.event_id,
            "discount_id": row.discount_id,
            "sales_count": row.sales_count or 0,
            "revenue": row.revenue or 0,
            "discount_code": row.discount.code if row.discount else None,
        }
        for row in rows
    ]


@router.get("/points", response_model=list[PointsLogRead])
def my_points(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    return points_history(db, rep, limit=limit, offset=offset)


@router.get("/quests", response_model=list[QuestRead])
def quests(db: Session = Depends(get_db), rep: Rep = Depends(get_current_rep)):
    return list_available_quests(db, rep)


@router.post("/quests/{quest_id}/submit", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
def submit(
    quest_id: int,
    payload: SubmissionCreate,
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    return submit_quest(
        db,
        rep,
        quest_id,
        proof_type=payload.proof_type,
        proof_url=payload.proof_url,
        proof_text=payload.proof_text,
    )


@router.get("/rewards", response_model=list[RewardRead])
def rewards(db: Session = Depends(get_db), rep: Rep = Depends(get_current_rep)):
    return list_rewards(db, rep.org_id, active_only=True)


@router.post("/rewards/{reward_id}/claim", response_model=ClaimRead, status_code=status.HTTP_201_CREATED)
def claim(
    reward_id: int,
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    return claim_reward(db, rep, reward_id)


@router.get("/claims", response_model=list[ClaimRead])
def my_claims(db: Session = Depends(get_db), rep: Rep = Depends(get_current_rep)):
    return list_claims(db, rep.org_id, rep_id=rep.id)


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
def rep_leaderboard(
    event_id: Optional[int] = None,
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    if not get_rep_settings(db, rep.org_id).get("leaderboard_visible", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="The leaderboard is hidden")
    return leaderboard(db, rep.org_id, event_id=event_id)


@router.get("/notifications", response_model=list[NotificationRead])
def notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    return list_notifications(db, rep, unread_only=unread_only)


@router.post("/notifications/read")
def read_notifications(
    payload: MarkReadRequest,
    db: Session = Depends(get_db),
    rep: Rep = Depends(get_current_rep),
):
    return {"updated": mark_notifications_read(db, rep, payload.ids)}
