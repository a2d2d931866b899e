"""Credits router: wallet summary, history, usage and the price table."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from routers.dependencies import ensure_user, get_credit_ledger, get_pricing
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.credit_types import CreditError
from services.credits import CreditLedger
from services.pricing import PricingResolver

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditCostUpdateRequest(BaseModel):
    credits_required: int = Field(ge=0, le=100000)
    description: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("/credits")
async def credits_summary(
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await ledger.get_summary(auth.user_id)
    except CreditError as exc:
        raise credit_http_error(exc) from exc


@router.get("/credits/history")
async def credits_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    action_type: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.get_history(auth.user_id, page=page, limit=limit, action_type=action_type)


@router.get("/credits/usage-stats")
async def credits_usage_stats(
    days: int = Query(default=30, ge=1, le=365),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.get_usage_stats(auth.user_id, days=days)


@router.get("/credits/check/{action_type}")
async def credits_check(
    action_type: str,
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        admission = await ledger.can_perform(auth.user_id, action_type)
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return admission.as_dict()


@router.get("/credits/reconcile")
async def credits_reconcile(
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.reconcile(auth.user_id)


@router.get("/credit-costs")
async def list_credit_costs(pricing: PricingResolver = Depends(get_pricing)):
    return {"items": await pricing.list_costs()}


@router.put("/credit-costs/{action_type}")
async def update_credit_cost(
    action_type: str,
    request: CreditCostUpdateRequest,
    _rate_limit: None = Depends(rate_limit("credit_costs_update", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(require_admin),
    pricing: PricingResolver = Depends(get_pricing),
):
    logger.info("credit_cost_update by=%s action=%s", auth.user_id, action_type)
    return await pricing.set_cost(
        action_type,
        request.credits_required,
        description=request.description,
        is_active=request.is_active,
    )
