from paybridge.models.user import User
from paybridge.models.plan import Plan
from paybridge.models.transaction import (
    Transaction,
    TransactionStatus,
    PaymentProvider,
    PaymentType,
    TERMINAL_STATUSES,
    ALLOWED_TRANSITIONS,
)
from paybridge.models.subscription import UserSubscription
from paybridge.models.user_card import UserCard

__all__ = [
    "User",
    "Plan",
    "Transaction",
    "TransactionStatus",
    "PaymentProvider",
    "PaymentType",
    "TERMINAL_STATUSES",
    "ALLOWED_TRANSITIONS",
    "UserSubscription",
    "UserCard",
]
