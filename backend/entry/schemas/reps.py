from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from entry.models.enums import (
    ClaimStatusEnum,
    ClaimTypeEnum,
    MilestoneTypeEnum,
    PointsSourceEnum,
    ProofTypeEnum,
    QuestStatusEnum,
    QuestTypeEnum,
    RepStatusEnum,
    RewardStatusEnum,
    RewardTypeEnum,
    SubmissionStatusEnum,
)


class RepCreate(BaseModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    tiktok: Optional[str] = None
    bio: Optional[str] = None


class RepUpdate(BaseModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    tiktok: Optional[str] = None
    bio: Optional[str] = None
    status: Optional[RepStatusEnum] = None


class RepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    status: RepStatusEnum
    first_name: str
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    tiktok: Optional[str] = None
    bio: Optional[str] = None
    points_balance: int
    total_sales: int
    total_revenue: float
    level: int
    onboarding_completed: bool
    created_at: datetime


class RepInviteResponse(RepRead):
    invite_token: Optional[str] = None
    invite_url: Optional[str] = None


class RepEventAssign(BaseModel):
    event_id: int
    discount_percent: Optional[float] = Field(default=None, ge=0, le=100)


class RepEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rep_id: int
    event_id: int
    discount_id: Optional[int] = None
    sales_count: int
    revenue: float
    discount_code: Optional[str] = None


class PointsAdjust(BaseModel):
    points: int
    reason: str = Field(..., min_length=1, max_length=255)

    @field_validator("points")
    @classmethod
    def non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("points must be non-zero")
        return value


class PointsLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    points: int
    balance_after: int
    source_type: PointsSourceEnum
    source_id: Optional[str] = None
    description: str
    created_by: Optional[str] = None
    created_at: datetime


class QuestBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    quest_type: QuestTypeEnum = QuestTypeEnum.CUSTOM
    points_reward: int = Field(default=0, ge=0)
    event_id: Optional[int] = None
    max_completions: Optional[int] = Field(default=None, ge=1)
    max_total: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    status: QuestStatusEnum = QuestStatusEnum.DRAFT


class QuestCreate(QuestBase):
    pass


class QuestUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    quest_type: Optional[QuestTypeEnum] = None
    points_reward: Optional[int] = Field(default=None, ge=0)
    event_id: Optional[int] = None
    max_completions: Optional[int] = Field(default=None, ge=1)
    max_total: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    status: Optional[QuestStatusEnum] = None


class QuestRead(QuestBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    total_completed: int
    created_at: datetime


class SubmissionCreate(BaseModel):
    proof_type: str
    proof_url: Optional[str] = None
    proof_text: Optional[str] = None


class SubmissionReview(BaseModel):
    status: SubmissionStatusEnum
    rejection_reason: Optional[str] = None


class SubmissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quest_id: int
    rep_id: int
    proof_type: ProofTypeEnum
    proof_url: Optional[str] = None
    proof_text: Optional[str] = None
    status: SubmissionStatusEnum
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    points_awarded: int
    created_at: datetime


class RewardBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    image_url: Optional[str] = None
    reward_type: RewardTypeEnum
    points_cost: Optional[int] = Field(default=None, ge=0)
    total_available: Optional[int] = Field(default=None, ge=0)
    status: RewardStatusEnum = RewardStatusEnum.ACTIVE


class RewardCreate(RewardBase):
    pass


class RewardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    image_url: Optional[str] = None
    points_cost: Optional[int] = Field(default=None, ge=0)
    total_available: Optional[int] = Field(default=None, ge=0)
    status: Optional[RewardStatusEnum] = None


class RewardRead(RewardBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    total_claimed: int
    created_at: datetime


class MilestoneBase(BaseModel):
    reward_id: int
    milestone_type: MilestoneTypeEnum
    threshold_value: int = Field(..., ge=1)
    event_id: Optional[int] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    sort_order: int = 0


class MilestoneCreate(MilestoneBase):
    pass


class MilestoneUpdate(BaseModel):
    milestone_type: Optional[MilestoneTypeEnum] = None
    threshold_value: Optional[int] = Field(default=None, ge=1)
    event_id: Optional[int] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    sort_order: Optional[int] = None


class MilestoneRead(MilestoneBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class ClaimRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rep_id: int
    reward_id: int
    claim_type: ClaimTypeEnum
    milestone_id: Optional[int] = None
    points_spent: int
    status: ClaimStatusEnum
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class ClaimAction(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    body: Optional[str] = None
    link: Optional[str] = None
    read: bool
    created_at: datetime


class MarkReadRequest(BaseModel):
    ids: Optional[list[int]] = None


class RepSignup(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = None
    invite_token: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    tiktok: Optional[str] = None


class RepLogin(BaseModel):
    email: EmailStr
    password: str


class RepTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    rep: RepRead


class LeaderboardEntry(BaseModel):
    position: int
    rep_id: int
    name: str
    sales: int
    revenue: float
    level: int


class RepDashboard(BaseModel):
    rep_id: int
    name: str
    points_balance: int
    level: int
    level_name: str
    next_level_points: Optional[int] = None
    total_sales: int
    total_revenue: float
    active_quests: int
    pending_rewards: int
    leaderboard_position: Optional[int] = None


class ProgramStats(BaseModel):
    total_reps: int
    active_reps: int
    pending_reps: int
    total_sales: int
    total_revenue: float
    points_awarded: int
    pending_submissions: int
    open_claims: int
    active_quests: int


class RepSignupResponse(BaseModel):
    rep: RepRead
    access_token: Optional[str] = None
    detail: Optional[str] = None
