import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from paybridge.models import Plan, PaymentType, Transaction, User, UserSubscription
from paybridge.services.transactions import TransactionStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentMetadata:
    transaction_id: int
    external_trans_id: str | None
    amount: int
    payment_type: PaymentType
    provider: str = "click"

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "PaymentMetadata":
        return cls(
            transaction_id=txn.id,
            external_trans_id=txn.external_trans_id,
            amount=int(txn.amount),
            payment_type=PaymentType(txn.payment_type),
            provider=getattr(txn.provider, "value", str(txn.provider)),
        )


class SubscriptionActivator(Protocol):
    def activate(self, user: User, plan: Plan, payment: PaymentMetadata) -> UserSubscription: ...


Notifier = Callable[[User, UserSubscription], None]


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionService:
    def __init__(self, db: Session, notifier: Notifier | None = None):
        self.db = db
        self.notifier = notifier

    def active_subscription(self, user_id: int) -> UserSubscription | None:
        return (
            self.db.query(UserSubscription)
            .filter(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
            .order_by(UserSubscription.end_at.desc())
            .first()
        )

    def activate(self, user: User, plan: Plan, payment: PaymentMetadata) -> UserSubscription:
        now = datetime.now(timezone.utc)
        period = timedelta(days=int(plan.duration_days or 30))
        subscription_type = payment.payment_type.value

        current = self.active_subscription(user.id)
        if current and _as_aware(current.end_at) > now:
            current.end_at = _as_aware(current.end_at) + period
            current.plan_id = plan.id
            current.transaction_id = payment.transaction_id
            current.paid_amount = payment.amount
            current.paid_by = payment.provider
            current.subscription_type = subscription_type
            current.auto_renew = payment.payment_type == PaymentType.SUBSCRIPTION
            subscription = current
            logger.info("Extended subscription id=%s user_id=%s until %s", current.id, user.id, current.end_at)
        else:
            if current:
                current.is_active = False
            subscription = UserSubscription(
                user_id=user.id,
                plan_id=plan.id,
                transaction_id=payment.transaction_id,
                subscription_type=subscription_type,
                start_at=now,
                end_at=now + period,
                is_active=True,
                auto_renew=payment.payment_type == PaymentType.SUBSCRIPTION,
                paid_amount=payment.amount,
                paid_by=payment.provider,
            )
            self.db.add(subscription)
            logger.info("Created subscription user_id=%s plan_id=%s days=%s", user.id, plan.id, period.days)

        user.subscription_type = subscription_type
        self.db.commit()
        self.db.refresh(subscription)

        if self.notifier:
            try:
                self.notifier(user, subscription)
            except Exception as exc:
                logger.warning("Payment success notification failed for user_id=%s: %s", user.id, exc)
        return subscription


def activate_for_transaction(db: Session, activator: SubscriptionActivator, txn: Transaction) -> bool:
    """Run activation for a completed transaction; failures are logged, not raised.

    The payment is final at this point, so a failed activation leaves
    ``activated_at`` empty for :func:`reconcile_activations` to pick up.
    """
    user = db.get(User, txn.user_id)
    plan = db.get(Plan, txn.plan_id)
    if not user or not plan:
        logger.error("Cannot activate transaction id=%s: user or plan missing", txn.id)
        return False
    # The claim and the subscription change commit together, so only one
    # caller activates a given payment.
    if not TransactionStore(db).claim_activation(txn):
        logger.info("Transaction id=%s already activated, skipping", txn.id)
        return False
    try:
        activator.activate(user, plan, PaymentMetadata.from_transaction(txn))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Subscription activation failed for transaction id=%s user_id=%s", txn.id, txn.user_id)
        return False
    db.refresh(txn)
    return True


def reconcile_activations(db: Session, activator: SubscriptionActivator, limit: int = 100) -> int:
    activated = 0
    for txn in TransactionStore(db).find_unactivated(limit=limit):
        if activate_for_transaction(db, activator, txn):
            activated += 1
    if activated:
        logger.info("Reconciled %s subscription activation(s).", activated)
    return activated
