from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime
from sqlalchemy.orm import relationship
from paybridge.core.database import Base
from paybridge.models.base import TimestampMixin


class UserCard(Base, TimestampMixin):
    __tablename__ = "user_cards"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    card_token = Column(String(128), nullable=False, index=True)
    # Only masked values; the full card number and expiry are never stored.
    masked_card_number = Column(String(32), nullable=True)
    masked_phone = Column(String(32), nullable=True)
    is_temporary = Column(Boolean, default=False, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="card")
