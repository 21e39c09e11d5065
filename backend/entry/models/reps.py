from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from entry.core.db import Base
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
    enum_type,
)
from entry.models.mixins import JSON_TYPE, MONEY, TimestampMixin


class Rep(TimestampMixin, Base):
    __tablename__ = "reps"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_reps_org_email"),
        UniqueConstraint("invite_token", name="uq_reps_invite_token"),
        Index("ix_reps_org_status", "org_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    email = Column(String, nullable=False)
    password_hash = Column(String, nullable=True)
    status = Column(
        enum_type(RepStatusEnum, "rep_status_enum"),
        nullable=False,
        default=RepStatusEnum.PENDING,
    )
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    instagram = Column(String, nullable=True)
    tiktok = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    invite_token = Column(String, nullable=True)
    # Level is derived from this balance, so spending points can drop a level.
    points_balance = Column(Integer, nullable=False, default=0)
    total_sales = Column(Integer, nullable=False, default=0)
    total_revenue = Column(MONEY, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    onboarding_completed = Column(Boolean, nullable=False, default=False)

    @property
    def name(self) -> str:
        return self.display_name or " ".join(p for p in [self.first_name, self.last_name] if p)


class RepEvent(TimestampMixin, Base):
    __tablename__ = "rep_events"
    __table_args__ = (
        UniqueConstraint("rep_id", "event_id", name="uq_rep_events_rep_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    discount_id = Column(Integer, ForeignKey("discounts.id", ondelete="SET NULL"), nullable=True)
    sales_count = Column(Integer, nullable=False, default=0)
    revenue = Column(MONEY, nullable=False, default=0)

    rep = relationship("Rep", lazy="selectin")
    discount = relationship("Discount", lazy="selectin")


class RepPointsLog(TimestampMixin, Base):
    __tablename__ = "rep_points_log"
    __table_args__ = (
        Index("ix_rep_points_log_rep_created", "rep_id", "created_at"),
        Index("ix_rep_points_log_source", "source_type", "source_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, nullable=False, default=0)
    balance_after = Column(Integer, nullable=False)
    source_type = Column(enum_type(PointsSourceEnum, "rep_points_source_enum"), nullable=False)
    source_id = Column(String, nullable=True)
    description = Column(String, nullable=False)
    created_by = Column(String, nullable=True)


class RepQuest(TimestampMixin, Base):
    __tablename__ = "rep_quests"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    quest_type = Column(
        enum_type(QuestTypeEnum, "rep_quest_type_enum"),
        nullable=False,
        default=QuestTypeEnum.CUSTOM,
    )
    points_reward = Column(Integer, nullable=False, default=0)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    # Per-rep cap (pending + approved submissions). None = unlimited.
    max_completions = Column(Integer, nullable=True)
    # Global cap across all reps. None = unlimited.
    max_total = Column(Integer, nullable=True)
    total_completed = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    status = Column(
        enum_type(QuestStatusEnum, "rep_quest_status_enum"),
        nullable=False,
        default=QuestStatusEnum.DRAFT,
    )


class RepQuestSubmission(TimestampMixin, Base):
    __tablename__ = "rep_quest_submissions"
    __table_args__ = (
        Index("ix_rep_quest_submissions_quest_rep", "quest_id", "rep_id"),
        Index("ix_rep_quest_submissions_org_status", "org_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    quest_id = Column(Integer, ForeignKey("rep_quests.id", ondelete="CASCADE"), nullable=False)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="CASCADE"), nullable=False)
    proof_type = Column(enum_type(ProofTypeEnum, "rep_proof_type_enum"), nullable=False)
    proof_url = Column(String, nullable=True)
    proof_text = Column(Text, nullable=True)
    status = Column(
        enum_type(SubmissionStatusEnum, "rep_submission_status_enum"),
        nullable=False,
        default=SubmissionStatusEnum.PENDING,
    )
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    points_awarded = Column(Integer, nullable=False, default=0)

    quest = relationship("RepQuest", lazy="selectin")
    rep = relationship("Rep", lazy="selectin")


class RepReward(TimestampMixin, Base):
    __tablename__ = "rep_rewards"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    reward_type = Column(enum_type(RewardTypeEnum, "rep_reward_type_enum"), nullable=False)
    points_cost = Column(Integer, nullable=True)
    # None = unlimited stock.
    total_available = Column(Integer, nullable=True)
    total_claimed = Column(Integer, nullable=False, default=0)
    status = Column(
        enum_type(RewardStatusEnum, "rep_reward_status_enum"),
        nullable=False,
        default=RewardStatusEnum.ACTIVE,
    )


class RepMilestone(TimestampMixin, Base):
    __tablename__ = "rep_milestones"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    reward_id = Column(Integer, ForeignKey("rep_rewards.id", ondelete="CASCADE"), nullable=False)
    milestone_type = Column(enum_type(MilestoneTypeEnum, "rep_milestone_type_enum"), nullable=False)
    threshold_value = Column(Integer, nullable=False)
    # Event-specific milestones measure rep_events stats instead of rep totals.
    event_id = Column(Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    reward = relationship("RepReward", lazy="selectin")


class RepRewardClaim(TimestampMixin, Base):
    __tablename__ = "rep_reward_claims"
    __table_args__ = (
        Index("ix_rep_reward_claims_rep_reward", "rep_id", "reward_id"),
        Index("ix_rep_reward_claims_org_status", "org_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="CASCADE"), nullable=False)
    reward_id = Column(Integer, ForeignKey("rep_rewards.id", ondelete="CASCADE"), nullable=False)
    claim_type = Column(enum_type(ClaimTypeEnum, "rep_claim_type_enum"), nullable=False)
    milestone_id = Column(Integer, ForeignKey("rep_milestones.id", ondelete="SET NULL"), nullable=True)
    points_spent = Column(Integer, nullable=False, default=0)
    status = Column(
        enum_type(ClaimStatusEnum, "rep_claim_status_enum"),
        nullable=False,
        default=ClaimStatusEnum.CLAIMED,
    )
    fulfilled_at = Column(DateTime, nullable=True)
    fulfilled_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    reward = relationship("RepReward", lazy="selectin")
    rep = relationship("Rep", lazy="selectin")


class RepNotification(TimestampMixin, Base):
    __tablename__ = "rep_notifications"
    __table_args__ = (
        Index("ix_rep_notifications_rep_read", "rep_id", "read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    metadata_json = Column(JSON_TYPE, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
