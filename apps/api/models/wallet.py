"""Wallet model: per-user prepaid credit balance and BYOK state."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Wallet(Base):
    """One row per user. Mutated only under the wallet lock."""

    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_user_credits_balance_nonneg"),
        CheckConstraint("credits_used >= 0", name="ck_user_credits_used_nonneg"),
    )

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    credits_balance = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    is_trial = Column(Boolean, nullable=False, default=True)
    trial_credits_given = Column(Boolean, nullable=False, default=False)

    # BYOK
    use_own_keys = Column(Boolean, nullable=False, default=False)
    keys_valid = Column(Boolean, nullable=False, default=False)
    keys_last_checked = Column(DateTime(timezone=True), nullable=True)
    places_api_key_encrypted = Column(Text, nullable=True)
    generation_api_key_encrypted = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="wallet")

    @property
    def byok_active(self) -> bool:
        return bool(self.use_own_keys and self.keys_valid)
