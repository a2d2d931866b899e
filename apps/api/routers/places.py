"""Places search router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credential_vault, get_credit_ledger
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.byok import CredentialVault
from services.credit_types import CreditError
from services.credits import CreditLedger
from services.places import list_search_history_service, search_nearby_service
from services.providers.types import ProviderError

router = APIRouter()


@router.get("/nearby")
async def nearby_search(
    location: str = Query(..., min_length=3, description="'latitude,longitude'"),
    radius: int = Query(..., ge=1),
    keyword: str = Query(..., min_length=1, max_length=200),
    type: str = Query(default="establishment", max_length=64),
    _rate_limit: None = Depends(rate_limit("places_nearby", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await search_nearby_service(
            user_id=auth.user_id,
            location=location,
            radius=radius,
            keyword=keyword,
            place_type=type,
            ledger=ledger,
            vault=vault,
            db=db,
        )
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.get("/history")
async def search_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_search_history_service(user_id=auth.user_id, db=db, page=page, limit=limit)
