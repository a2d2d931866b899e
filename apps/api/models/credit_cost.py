"""CreditCost model: price list for billable actions."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database import Base


class CreditCost(Base):
    __tablename__ = "credit_costs"
    __table_args__ = (
        CheckConstraint("credits_required >= 0", name="ck_credit_costs_nonneg"),
    )

    action_type = Column(String, primary_key=True)
    credits_required = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
