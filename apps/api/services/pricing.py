"""Credit cost table lookups and administration."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_cost import CreditCost
from services.credit_types import UnknownActionError

logger = logging.getLogger(__name__)


class PricingResolver:
    """Reads action prices from the credit_costs table. Never caches."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def cost(self, action_type: str) -> int:
        result = await self.db.execute(
            select(CreditCost.credits_required).where(
                CreditCost.action_type == action_type,
                CreditCost.is_active.is_(True),
            )
        )
        credits_required = result.scalar_one_or_none()
        if credits_required is None:
            raise UnknownActionError(action_type)
        return int(credits_required)

    async def list_costs(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(CreditCost)
            .where(CreditCost.is_active.is_(True))
            .order_by(CreditCost.credits_required.asc(), CreditCost.action_type.asc())
        )
        return [serialize_cost(row) for row in result.scalars().all()]

    async def set_cost(
        self,
        action_type: str,
        credits_required: int,
        *,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Create or update a price. Only later debits see the change."""
        if int(credits_required) < 0:
            raise ValueError("credits_required must be zero or greater")
        result = await self.db.execute(select(CreditCost).where(CreditCost.action_type == action_type))
        row = result.scalar_one_or_none()
        if row is None:
            row = CreditCost(action_type=action_type, is_active=True)
            self.db.add(row)
        previous = row.credits_required
        row.credits_required = int(credits_required)
        if description is not None:
            row.description = description
        if is_active is not None:
            row.is_active = bool(is_active)
        await self.db.commit()
        logger.info(
            "credit_cost_updated action=%s previous=%s credits=%s active=%s",
            action_type,
            previous,
            row.credits_required,
            row.is_active,
        )
        return serialize_cost(row)


def serialize_cost(row: CreditCost) -> Dict[str, Any]:
    return {
        "action_type": row.action_type,
        "credits_required": row.credits_required,
        "description": row.description,
        "is_active": bool(row.is_active),
    }


async def seed_credit_costs(db: AsyncSession, costs: Mapping[str, int]) -> int:
    """Insert configured default prices that are not in the table yet."""
    result = await db.execute(select(CreditCost.action_type))
    existing = set(result.scalars().all())
    created = 0
    for action_type, credits_required in costs.items():
        if action_type in existing:
            continue
        db.add(
            CreditCost(
                action_type=action_type,
                credits_required=max(int(credits_required), 0),
                description=action_type.replace("_", " ").capitalize(),
                is_active=True,
            )
        )
        created += 1
    await db.commit()
    return created
