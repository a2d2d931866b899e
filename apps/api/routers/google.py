"""Unmetered Google lookups: geocoding and place details."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credential_vault
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.byok import CredentialVault
from services.credit_types import CreditError
from services.places import geocode_service, place_details_service
from services.providers.types import ProviderError

router = APIRouter()

_lookup_rate_limit = rate_limit("google_lookup", limit=300, window_seconds=3600)


@router.get("/geocode")
async def geocode(
    address: str = Query(default="", max_length=500),
    _rate_limit: None = Depends(_lookup_rate_limit),
    auth: AuthContext = Depends(get_auth_context),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await geocode_service(user_id=auth.user_id, address=address, vault=vault)
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.get("/places/details")
async def place_details(
    place_id: str = Query(default="", max_length=255),
    fields: Optional[str] = Query(default=None, max_length=500),
    _rate_limit: None = Depends(_lookup_rate_limit),
    auth: AuthContext = Depends(get_auth_context),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await place_details_service(user_id=auth.user_id, place_id=place_id, vault=vault, fields=fields)
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc
