"""Plans, subscriptions and credit purchases. Credits flow through the ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.payment import Payment
from models.plan import Plan
from models.subscription import Subscription
from services.credits import CreditLedger

logger = logging.getLogger(__name__)

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "Starter",
        "slug": "starter",
        "description": "For freelancers testing outreach.",
        "credits": 2500,
        "price": Decimal("19.00"),
        "features": ["2,500 credits / month", "AI emails and proposals", "SEO audits"],
        "sort_order": 1,
    },
    {
        "name": "Pro",
        "slug": "pro",
        "description": "For agencies running several campaigns.",
        "credits": 10000,
        "price": Decimal("49.00"),
        "features": ["10,000 credits / month", "Unlimited campaigns", "Priority support"],
        "sort_order": 2,
    },
    {
        "name": "Business",
        "slug": "business",
        "description": "For teams prospecting at volume.",
        "credits": 40000,
        "price": Decimal("149.00"),
        "features": ["40,000 credits / month", "Bring your own API keys", "Dedicated support"],
        "sort_order": 3,
    },
]


class PlanNotFoundError(LookupError):
    pass


class SubscriptionNotFoundError(LookupError):
    pass


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_plan(plan: Plan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "slug": plan.slug,
        "description": plan.description,
        "credits": plan.credits,
        "price": float(plan.price),
        "currency": plan.currency,
        "billing_period": plan.billing_period,
        "features": plan.features or [],
        "sort_order": plan.sort_order,
    }


def serialize_subscription(subscription: Subscription, plan: Optional[Plan] = None) -> Dict[str, Any]:
    payload = {
        "id": subscription.id,
        "plan_id": subscription.plan_id,
        "status": subscription.status,
        "current_period_start": _iso(subscription.current_period_start),
        "current_period_end": _iso(subscription.current_period_end),
        "cancel_at_period_end": bool(subscription.cancel_at_period_end),
        "cancelled_at": _iso(subscription.cancelled_at),
    }
    if plan is not None:
        payload.update(
            {
                "plan_name": plan.name,
                "plan_slug": plan.slug,
                "plan_credits": plan.credits,
                "plan_price": float(plan.price),
                "plan_features": plan.features or [],
            }
        )
    return payload


def _add_period(start: datetime, billing_period: str) -> datetime:
    if billing_period == "yearly":
        try:
            return start.replace(year=start.year + 1)
        except ValueError:
            return start + timedelta(days=365)
    month = start.month + 1
    year = start.year + (1 if month > 12 else 0)
    month = 1 if month > 12 else month
    day = start.day
    while True:
        try:
            return start.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1


async def seed_plans(db: AsyncSession, plans: List[Dict[str, Any]] = DEFAULT_PLANS) -> int:
    result = await db.execute(select(Plan.slug))
    existing = set(result.scalars().all())
    created = 0
    for plan_data in plans:
        if plan_data["slug"] in existing:
            continue
        db.add(Plan(currency="USD", billing_period="monthly", is_active=True, **plan_data))
        created += 1
    await db.commit()
    return created


async def list_plans(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.sort_order.asc()))
    return [serialize_plan(plan) for plan in result.scalars().all()]


async def get_plan(db: AsyncSession, slug: str) -> Plan:
    result = await db.execute(select(Plan).where(Plan.slug == slug, Plan.is_active.is_(True)))
    plan = result.scalar_one_or_none()
    if plan is None:
        raise PlanNotFoundError(slug)
    return plan


async def get_active_subscription(db: AsyncSession, user_id: str) -> Optional[Dict[str, Any]]:
    result = await db.execute(
        select(Subscription, Plan)
        .join(Plan, Subscription.plan_id == Plan.id)
        .where(Subscription.user_id == user_id, Subscription.status == "active")
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    subscription, plan = row
    return serialize_subscription(subscription, plan)


async def subscribe_to_plan(
    db: AsyncSession,
    ledger: CreditLedger,
    *,
    user_id: str,
    plan_slug: str,
    payment_details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Replace any active subscription and grant the plan's credits.

    Subscription, payment and credit transaction commit together: they are
    staged on the session and the ledger's credit commits the unit.
    """
    plan = await get_plan(db, plan_slug)
    await ledger.get_or_create_wallet(user_id)
    details = dict(payment_details or {})
    now = datetime.now(timezone.utc)

    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id, Subscription.status == "active")
    )
    for existing in result.scalars().all():
        existing.status = "cancelled"
        existing.cancelled_at = now

    subscription = Subscription(
        user_id=user_id,
        plan_id=plan.id,
        status="active",
        current_period_start=now,
        current_period_end=_add_period(now, plan.billing_period),
        metadata_json=details,
    )
    db.add(subscription)
    await db.flush()
    db.add(
        Payment(
            user_id=user_id,
            subscription_id=subscription.id,
            amount=plan.price,
            currency=plan.currency,
            status="completed",
            payment_method=str(details.get("method") or "card"),
            metadata_json=details,
        )
    )
    plan_payload = serialize_plan(plan)
    subscription_payload = serialize_subscription(subscription, plan)

    credit = await ledger.credit(
        user_id,
        plan.credits,
        "subscription",
        f"{plan.name} plan subscription - {plan.credits} credits",
        metadata={"plan_slug": plan.slug, "subscription_id": subscription_payload["id"]},
    )
    logger.info("subscription_created user=%s plan=%s credits=%s", user_id, plan.slug, plan.credits)
    return {
        "subscription": subscription_payload,
        "plan": plan_payload,
        "credits_added": credit.credits_added,
        "new_balance": credit.balance,
    }


async def cancel_subscription(db: AsyncSession, user_id: str, *, at_period_end: bool = False) -> Dict[str, Any]:
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id, Subscription.status == "active")
    )
    subscriptions = result.scalars().all()
    if not subscriptions:
        raise SubscriptionNotFoundError(user_id)
    now = datetime.now(timezone.utc)
    for subscription in subscriptions:
        subscription.cancel_at_period_end = bool(at_period_end)
        if not at_period_end:
            subscription.status = "cancelled"
            subscription.cancelled_at = now
    payload = serialize_subscription(subscriptions[0])
    await db.commit()
    return payload


def credit_purchase_price(credits: int, credits_per_dollar: int) -> Decimal:
    return (Decimal(int(credits)) / Decimal(max(int(credits_per_dollar), 1))).quantize(Decimal("0.01"))


async def buy_credits(
    db: AsyncSession,
    ledger: CreditLedger,
    *,
    user_id: str,
    credits: int,
    minimum: int,
    credits_per_dollar: int,
    payment_details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    if int(credits) < int(minimum):
        raise ValueError(f"Minimum purchase is {minimum} credits")
    await ledger.get_or_create_wallet(user_id)
    details = dict(payment_details or {})
    price = credit_purchase_price(credits, credits_per_dollar)
    db.add(
        Payment(
            user_id=user_id,
            amount=price,
            currency="USD",
            status="completed",
            payment_method=str(details.get("method") or "card"),
            metadata_json={"credits": int(credits), **details},
        )
    )
    credit = await ledger.credit(
        user_id,
        int(credits),
        "purchase",
        f"Purchased {int(credits)} credits",
        metadata={"price": str(price), "currency": "USD"},
    )
    return {"credits_added": credit.credits_added, "new_balance": credit.balance, "price": float(price)}


async def get_payment_history(db: AsyncSession, user_id: str, *, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)
    total_result = await db.execute(select(func.count(Payment.id)).where(Payment.user_id == user_id))
    total = int(total_result.scalar() or 0)
    result = await db.execute(
        select(Payment, Plan.name)
        .outerjoin(Subscription, Payment.subscription_id == Subscription.id)
        .outerjoin(Plan, Subscription.plan_id == Plan.id)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [
        {
            "id": payment.id,
            "amount": float(payment.amount),
            "currency": payment.currency,
            "status": payment.status,
            "payment_method": payment.payment_method,
            "plan_name": plan_name,
            "created_at": _iso(payment.created_at),
        }
        for payment, plan_name in result.all()
    ]
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }
