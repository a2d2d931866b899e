"""SEO analysis router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credential_vault, get_credit_ledger
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.byok import CredentialVault
from services.credit_types import CreditError
from services.credits import CreditLedger
from services.providers.types import ProviderError
from services.seo import analyze_website_service, get_report_service, list_reports_service

router = APIRouter()


class AnalyzeRequest(BaseModel):
    website_url: str = Field(default="", max_length=2048)
    email: Optional[str] = Field(default=None, max_length=320)


@router.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    _rate_limit: None = Depends(rate_limit("seo_analyze", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await analyze_website_service(
            user_id=auth.user_id,
            website_url=request.website_url,
            email=request.email,
            ledger=ledger,
            vault=vault,
            db=db,
        )
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.get("/reports")
async def reports(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_reports_service(user_id=auth.user_id, db=db, limit=limit, offset=offset)


@router.get("/reports/{report_id}")
async def report_detail(
    report_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_report_service(user_id=auth.user_id, report_id=report_id, db=db)
