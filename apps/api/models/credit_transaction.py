"""CreditTransaction model: append-only log of wallet mutations."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditTransaction(Base):
    """Immutable ledger entry. Ids grow in per-owner commit order."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_nonneg"),
        CheckConstraint(
            "transaction_type IN ('credit', 'debit')",
            name="ck_credit_transactions_direction",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    action_type = Column(String, nullable=False, index=True)
    reference_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_transactions")

    @property
    def signed_amount(self) -> int:
        return self.amount if self.transaction_type == "credit" else -self.amount
