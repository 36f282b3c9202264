import enum
from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Index, BigInteger, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from paybridge.core.database import Base
from paybridge.models.base import TimestampMixin


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class PaymentProvider(str, enum.Enum):
    CLICK = "click"


class PaymentType(str, enum.Enum):
    ONETIME = "onetime"
    SUBSCRIPTION = "subscription"


TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELED})

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.PROCESSING, TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELED}
    ),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELED: frozenset(),
}


def source_statuses(target: TransactionStatus) -> list[TransactionStatus]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("provider", "external_trans_id", name="uq_transactions_provider_external"),)

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(Enum(PaymentProvider), nullable=False, default=PaymentProvider.CLICK)
    payment_type = Column(Enum(PaymentType), nullable=False, default=PaymentType.ONETIME)
    external_trans_id = Column(String(64), nullable=True)
    merchant_trans_id = Column(String(64), nullable=True)
    prepare_id = Column(BigInteger, nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    sign_time = Column(String(32), nullable=True)
    error_code = Column(Integer, nullable=True)
    error_note = Column(String(255), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="transactions")
    plan = relationship("Plan")


Index("ix_transactions_prepare_user_plan", Transaction.prepare_id, Transaction.user_id, Transaction.plan_id)
Index("ix_transactions_status_activated", Transaction.status, Transaction.activated_at)
