from .users import User
from .organizations import Organization, OrgSetting
from .memberships import Membership
from .events import Event, TicketType
from .customers import Customer
from .discounts import Discount
from .orders import Order, OrderItem, Ticket
from .guest_list import GuestListEntry
from .abandoned_carts import AbandonedCart
from .payment_events import PaymentEvent, WebhookEvent
from .email_logs import EmailLog
from .reps import (
    Rep,
    RepEvent,
    RepPointsLog,
    RepQuest,
    RepQuestSubmission,
    RepReward,
    RepMilestone,
    RepRewardClaim,
    RepNotification,
)
