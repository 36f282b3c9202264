from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from paybridge.core.database import Base
from paybridge.models.base import TimestampMixin


class UserSubscription(Base, TimestampMixin):
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    subscription_type = Column(String(32), nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    auto_renew = Column(Boolean, default=False, nullable=False)
    paid_amount = Column(Integer, nullable=True)
    paid_by = Column(String(32), nullable=True)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan")


Index("ix_user_subscriptions_user_active", UserSubscription.user_id, UserSubscription.is_active)
