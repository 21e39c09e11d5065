from enum import Enum

from sqlalchemy import Enum as SAEnum

# Stored as strings (native enums disabled for easier evolution). Values,
# not member names, go to the database so raw strings round-trip.


def enum_type(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


class RoleEnum(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    STAFF = "staff"


class MembershipStatusEnum(str, Enum):
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"


class EventStatusEnum(str, Enum):
    DRAFT = "draft"
    LIVE = "live"
    PAST = "past"
    CANCELLED = "cancelled"


class PaymentMethodEnum(str, Enum):
    STRIPE = "stripe"
    TEST = "test"
    FREE = "free"
    MANUAL = "manual"


class TicketTypeStatusEnum(str, Enum):
    ACTIVE = "active"
    HIDDEN = "hidden"
    SOLD_OUT = "sold_out"
    ARCHIVED = "archived"


class OrderStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TicketStatusEnum(str, Enum):
    VALID = "valid"
    USED = "used"
    CANCELLED = "cancelled"
    TRANSFERRED = "transferred"
    EXPIRED = "expired"


class DiscountTypeEnum(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountStatusEnum(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CartStatusEnum(str, Enum):
    ABANDONED = "abandoned"
    RECOVERED = "recovered"
    EXPIRED = "expired"


class PaymentEventTypeEnum(str, Enum):
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    CHECKOUT_ERROR = "checkout_error"
    CHECKOUT_VALIDATION = "checkout_validation"
    WEBHOOK_ERROR = "webhook_error"
    WEBHOOK_RECEIVED = "webhook_received"
    CONNECT_ACCOUNT_UNHEALTHY = "connect_account_unhealthy"
    CONNECT_ACCOUNT_HEALTHY = "connect_account_healthy"
    CONNECT_FALLBACK = "connect_fallback"
    RATE_LIMIT_HIT = "rate_limit_hit"
    SUBSCRIPTION_FAILED = "subscription_failed"
    ORPHANED_PAYMENT = "orphaned_payment"
    CLIENT_CHECKOUT_ERROR = "client_checkout_error"
    INCOMPLETE_PAYMENT = "incomplete_payment"


class SeverityEnum(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EmailStatusEnum(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class RepStatusEnum(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class PointsSourceEnum(str, Enum):
    SALE = "sale"
    QUEST = "quest"
    MANUAL = "manual"
    REWARD_SPEND = "reward_spend"
    REVOCATION = "revocation"
    REFUND = "refund"


class QuestTypeEnum(str, Enum):
    SOCIAL_POST = "social_post"
    STORY_SHARE = "story_share"
    CONTENT_CREATION = "content_creation"
    CUSTOM = "custom"


class QuestStatusEnum(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"
    DRAFT = "draft"


class ProofTypeEnum(str, Enum):
    SCREENSHOT = "screenshot"
    URL = "url"
    TEXT = "text"


class SubmissionStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RewardTypeEnum(str, Enum):
    MILESTONE = "milestone"
    POINTS_SHOP = "points_shop"
    MANUAL = "manual"


class RewardStatusEnum(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class MilestoneTypeEnum(str, Enum):
    SALES_COUNT = "sales_count"
    REVENUE = "revenue"
    POINTS = "points"


class ClaimTypeEnum(str, Enum):
    MILESTONE = "milestone"
    POINTS_SHOP = "points_shop"
    MANUAL = "manual"


class ClaimStatusEnum(str, Enum):
    CLAIMED = "claimed"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
