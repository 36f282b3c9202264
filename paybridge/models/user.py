from sqlalchemy import Column, Integer, String, BigInteger
from sqlalchemy.orm import relationship
from paybridge.core.database import Base
from paybridge.models.base import TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    # "onetime" or "subscription", set by the last successful activation.
    subscription_type = Column(String(32), nullable=True)

    transactions = relationship("Transaction", back_populates="user")
    subscriptions = relationship("UserSubscription", back_populates="user")
    card = relationship("UserCard", back_populates="user", uselist=False)
