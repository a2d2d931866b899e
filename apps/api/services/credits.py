"""Credit ledger: atomic debit/credit, admission checks and usage accounting."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.wallet import Wallet
from services.credit_types import (
    Admission,
    CreditResult,
    DebitOutcome,
    DebitResult,
    InsufficientCreditsError,
    UnknownActionError,
)
from services.pricing import PricingResolver
from services.wallets import get_or_create_wallet, load_wallet, locked_wallet

logger = logging.getLogger(__name__)

REASON_UNKNOWN_ACTION = "unknown_action"
REASON_INSUFFICIENT_CREDITS = "insufficient_credits"
REFUND_ACTION_TYPE = "refund"


class CreditLedger:
    """Owns every balance mutation of a user's wallet.

    Prices and the trial grant are injected so callers (and tests) decide
    where they come from. Each mutating call is one transaction on ``db``.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        pricing: PricingResolver,
        trial_credits: int,
        lock_timeout_ms: Optional[int] = None,
    ) -> None:
        self.db = db
        self.pricing = pricing
        self.trial_credits = int(trial_credits)
        self.lock_timeout_ms = lock_timeout_ms

    async def get_or_create_wallet(self, user_id: str) -> Wallet:
        return await get_or_create_wallet(self.db, user_id, trial_credits=self.trial_credits)

    async def _price(self, action_type: str) -> int:
        try:
            return await self.pricing.cost(action_type)
        except UnknownActionError:
            await self.db.rollback()
            raise

    def _lock(self, user_id: str):
        return locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms)

    async def debit(
        self,
        user_id: str,
        action_type: str,
        *,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DebitResult:
        """Charge one action, exempting BYOK users. Never retries."""
        credits_required = await self._price(action_type)
        await self.get_or_create_wallet(user_id)

        try:
            async with self._lock(user_id) as wallet:
                if wallet.byok_active:
                    result = DebitResult(
                        outcome=DebitOutcome.EXEMPT,
                        action_type=action_type,
                        credits_required=credits_required,
                        credits_deducted=0,
                        balance=wallet.credits_balance,
                    )
                elif wallet.credits_balance < credits_required:
                    raise InsufficientCreditsError(credits_required, wallet.credits_balance)
                elif credits_required == 0:
                    result = DebitResult(
                        outcome=DebitOutcome.CHARGED,
                        action_type=action_type,
                        credits_required=0,
                        credits_deducted=0,
                        balance=wallet.credits_balance,
                    )
                else:
                    new_balance = wallet.credits_balance - credits_required
                    wallet.credits_balance = new_balance
                    wallet.credits_used = (wallet.credits_used or 0) + credits_required
                    entry = CreditTransaction(
                        user_id=user_id,
                        transaction_type="debit",
                        amount=credits_required,
                        balance_after=new_balance,
                        action_type=action_type,
                        reference_id=reference_id,
                        metadata_json=metadata,
                    )
                    self.db.add(entry)
                    await self.db.flush()
                    result = DebitResult(
                        outcome=DebitOutcome.CHARGED,
                        action_type=action_type,
                        credits_required=credits_required,
                        credits_deducted=credits_required,
                        balance=new_balance,
                        transaction_id=entry.id,
                    )
        except InsufficientCreditsError as exc:
            logger.info(
                "debit_denied user=%s action=%s required=%s balance=%s",
                user_id,
                action_type,
                exc.credits_required,
                exc.current_balance,
            )
            return DebitResult(
                outcome=DebitOutcome.INSUFFICIENT,
                action_type=action_type,
                credits_required=exc.credits_required,
                credits_deducted=0,
                balance=exc.current_balance,
            )

        logger.info(
            "debit user=%s action=%s outcome=%s deducted=%s balance=%s",
            user_id,
            action_type,
            result.outcome.value,
            result.credits_deducted,
            result.balance,
        )
        return result

    async def credit(
        self,
        user_id: str,
        amount: int,
        action_type: str,
        description: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        clear_trial: bool = True,
    ) -> CreditResult:
        """Add credits to an existing wallet. Never creates one."""
        credits_added = int(amount)
        if credits_added <= 0:
            raise ValueError("amount must be greater than 0")

        async with self._lock(user_id) as wallet:
            new_balance = wallet.credits_balance + credits_added
            wallet.credits_balance = new_balance
            if clear_trial:
                wallet.is_trial = False
            entry = CreditTransaction(
                user_id=user_id,
                transaction_type="credit",
                amount=credits_added,
                balance_after=new_balance,
                action_type=action_type,
                description=description,
                metadata_json=metadata,
            )
            self.db.add(entry)
            await self.db.flush()
            transaction_id = entry.id

        logger.info(
            "credit user=%s action=%s added=%s balance=%s",
            user_id,
            action_type,
            credits_added,
            new_balance,
        )
        return CreditResult(credits_added=credits_added, balance=new_balance, transaction_id=transaction_id)

    async def refund(self, charge: DebitResult, user_id: str, *, reason: str) -> Optional[CreditResult]:
        """Return the credits of a charged action whose provider call failed."""
        if charge.outcome is not DebitOutcome.CHARGED or charge.credits_deducted <= 0:
            return None
        result = await self.credit(
            user_id,
            charge.credits_deducted,
            REFUND_ACTION_TYPE,
            f"Refund for failed {charge.action_type}",
            metadata={
                "refunded_action_type": charge.action_type,
                "refunded_transaction_id": charge.transaction_id,
                "reason": reason,
            },
            clear_trial=False,
        )
        logger.warning(
            "refund user=%s action=%s credits=%s reason=%s",
            user_id,
            charge.action_type,
            charge.credits_deducted,
            reason,
        )
        return result

    async def can_perform(self, user_id: str, action_type: str) -> Admission:
        """Non-mutating admission check mirroring debit's decision."""
        try:
            credits_required = await self._price(action_type)
        except UnknownActionError:
            return Admission(allowed=False, reason=REASON_UNKNOWN_ACTION)

        wallet = await self.get_or_create_wallet(user_id)
        if wallet.byok_active:
            return Admission(
                allowed=True,
                credits_required=credits_required,
                current_balance=wallet.credits_balance,
                using_own_keys=True,
            )
        if wallet.credits_balance < credits_required:
            return Admission(
                allowed=False,
                reason=REASON_INSUFFICIENT_CREDITS,
                credits_required=credits_required,
                current_balance=wallet.credits_balance,
            )
        return Admission(
            allowed=True,
            credits_required=credits_required,
            current_balance=wallet.credits_balance,
        )

    async def get_summary(self, user_id: str) -> Dict[str, Any]:
        wallet = await self.get_or_create_wallet(user_id)
        count_result = await self.db.execute(
            select(func.count(CreditTransaction.id)).where(CreditTransaction.user_id == user_id)
        )
        return {
            "user_id": user_id,
            "credits_balance": wallet.credits_balance,
            "credits_used": wallet.credits_used,
            "is_trial": bool(wallet.is_trial),
            "trial_credits_given": bool(wallet.trial_credits_given),
            "use_own_keys": bool(wallet.use_own_keys),
            "keys_valid": bool(wallet.keys_valid),
            "total_transactions": int(count_result.scalar() or 0),
        }

    async def get_history(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        action_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 100)
        filters = [CreditTransaction.user_id == user_id]
        if action_type:
            filters.append(CreditTransaction.action_type == action_type)

        total_result = await self.db.execute(select(func.count(CreditTransaction.id)).where(*filters))
        total = int(total_result.scalar() or 0)
        result = await self.db.execute(
            select(CreditTransaction)
            .where(*filters)
            .order_by(CreditTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return {
            "items": [serialize_transaction(entry) for entry in result.scalars().all()],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit,
            },
        }

    async def get_usage_stats(self, user_id: str, *, days: int = 30) -> Dict[str, Any]:
        days = min(max(int(days), 1), 365)
        since = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id, CreditTransaction.created_at >= since)
            .order_by(CreditTransaction.id.asc())
        )
        by_action: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "total_credits": 0})
        daily: Dict[str, Dict[str, int]] = defaultdict(lambda: {"debits": 0, "credits": 0})
        for entry in result.scalars().all():
            day = entry.created_at.date().isoformat() if entry.created_at else "unknown"
            if entry.transaction_type == "debit":
                by_action[entry.action_type]["count"] += 1
                by_action[entry.action_type]["total_credits"] += entry.amount
                daily[day]["debits"] += entry.amount
            else:
                daily[day]["credits"] += entry.amount

        return {
            "by_action_type": sorted(
                ({"action_type": key, **value} for key, value in by_action.items()),
                key=lambda item: item["total_credits"],
                reverse=True,
            ),
            "daily_usage": [{"date": key, **daily[key]} for key in sorted(daily)],
            "period": f"{days} days",
        }

    async def replay_balance(self, user_id: str) -> int:
        """Rebuild the balance from the transaction log."""
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.id.asc())
        )
        balance = 0
        for entry in result.scalars().all():
            balance += entry.signed_amount
        return balance

    async def reconcile(self, user_id: str) -> Dict[str, Any]:
        wallet = await load_wallet(self.db, user_id)
        replayed = await self.replay_balance(user_id)
        stored = wallet.credits_balance if wallet is not None else 0
        consistent = stored == replayed
        if not consistent:
            logger.warning("ledger_mismatch user=%s stored=%s replayed=%s", user_id, stored, replayed)
        return {
            "user_id": user_id,
            "wallet_exists": wallet is not None,
            "stored_balance": stored,
            "replayed_balance": replayed,
            "consistent": consistent,
        }


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "transaction_type": entry.transaction_type,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "action_type": entry.action_type,
        "reference_id": entry.reference_id,
        "description": entry.description,
        "metadata": entry.metadata_json,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
