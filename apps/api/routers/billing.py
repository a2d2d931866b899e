"""Billing router: plans, subscriptions, payments and credit purchases."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credit_ledger
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.credit_types import CreditError
from services.credits import CreditLedger
from services.plans import (
    PlanNotFoundError,
    SubscriptionNotFoundError,
    buy_credits,
    cancel_subscription,
    get_active_subscription,
    get_payment_history,
    get_plan,
    list_plans,
    serialize_plan,
    subscribe_to_plan,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class SubscribeRequest(BaseModel):
    plan_slug: str = Field(min_length=1, max_length=64)
    payment_details: Optional[Dict[str, Any]] = None


class CancelSubscriptionRequest(BaseModel):
    at_period_end: bool = False


class BuyCreditsRequest(BaseModel):
    credits: int = Field(ge=1, le=1000000)
    payment_details: Optional[Dict[str, Any]] = None


def _payment_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload = dict(details or {})
    # Without a live payment processor purchases are recorded as simulated.
    payload.setdefault("method", "card" if settings.BILLING_ENABLED else "simulated")
    return payload


@router.get("/plans")
async def plans_index(db: AsyncSession = Depends(get_db)):
    return {"items": await list_plans(db)}


@router.get("/plans/{slug}")
async def plan_detail(slug: str, db: AsyncSession = Depends(get_db)):
    try:
        plan = await get_plan(db, slug)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Plan not found") from exc
    return serialize_plan(plan)


@router.get("/subscription")
async def current_subscription(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"subscription": await get_active_subscription(db, auth.user_id)}


@router.post("/subscription/subscribe")
async def subscribe(
    request: SubscribeRequest,
    _rate_limit: None = Depends(rate_limit("billing_subscribe", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        result = await subscribe_to_plan(
            db,
            ledger,
            user_id=auth.user_id,
            plan_slug=request.plan_slug,
            payment_details=_payment_details(request.payment_details),
        )
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Plan not found") from exc
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return {"ok": True, **result}


@router.post("/subscription/cancel")
async def cancel(
    request: CancelSubscriptionRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        subscription = await cancel_subscription(db, auth.user_id, at_period_end=request.at_period_end)
    except SubscriptionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="No active subscription found") from exc
    return {"ok": True, "subscription": subscription}


@router.get("/payments/history")
async def payments_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_payment_history(db, auth.user_id, page=page, limit=limit)


@router.post("/credits/buy")
async def buy(
    request: BuyCreditsRequest,
    _rate_limit: None = Depends(rate_limit("billing_buy_credits", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        result = await buy_credits(
            db,
            ledger,
            user_id=auth.user_id,
            credits=request.credits,
            minimum=settings.CREDIT_PURCHASE_MINIMUM,
            credits_per_dollar=settings.CREDITS_PER_DOLLAR,
            payment_details=_payment_details(request.payment_details),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return {"ok": True, **result}
