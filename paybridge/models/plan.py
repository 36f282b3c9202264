from sqlalchemy import Column, Integer, String, Boolean, Index
from paybridge.core.database import Base
from paybridge.models.base import TimestampMixin


class Plan(Base, TimestampMixin):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    price = Column(Integer, nullable=False)
    duration_days = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, default=True, nullable=False)


Index("ix_plans_active", Plan.is_active)
