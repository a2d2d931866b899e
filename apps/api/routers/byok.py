"""BYOK router: store, remove, verify and toggle user provider keys."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credential_vault, get_credit_ledger
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.credit_types import CreditError
from services.byok import CredentialVault
from services.credits import CreditLedger

router = APIRouter()


class SaveKeysRequest(BaseModel):
    places_api_key: Optional[str] = Field(default=None, max_length=512)
    generation_api_key: Optional[str] = Field(default=None, max_length=512)
    use_own_keys: bool = False


class RemoveKeysRequest(BaseModel):
    key_type: str = "all"


class ToggleByokRequest(BaseModel):
    enabled: bool


async def _ready_wallet(db: AsyncSession, ledger: CreditLedger, user_id: str) -> None:
    await ensure_user(db, user_id)
    await ledger.get_or_create_wallet(user_id)
    # Key checks call out to providers; no read transaction may stay open.
    await db.commit()


@router.get("/api-keys/status")
async def api_keys_status(
    auth: AuthContext = Depends(get_auth_context),
    vault: CredentialVault = Depends(get_credential_vault),
):
    status = await vault.status(auth.user_id)
    return status.as_dict()


@router.post("/api-keys")
async def save_api_keys(
    request: SaveKeysRequest,
    _rate_limit: None = Depends(rate_limit("byok_save", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    try:
        await _ready_wallet(db, ledger, auth.user_id)
        status = await vault.save_credentials(
            auth.user_id,
            places_key=request.places_api_key,
            generation_key=request.generation_api_key,
            enable=request.use_own_keys,
        )
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return {"ok": True, **status.as_dict()}


@router.post("/api-keys/remove")
async def remove_api_keys(
    request: RemoveKeysRequest,
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    try:
        await _ready_wallet(db, ledger, auth.user_id)
        status = await vault.remove_credentials(auth.user_id, request.key_type)
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return {"ok": True, **status.as_dict()}


@router.post("/api-keys/verify")
async def verify_api_keys(
    _rate_limit: None = Depends(rate_limit("byok_verify", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    vault: CredentialVault = Depends(get_credential_vault),
):
    try:
        return await vault.verify_and_switch(auth.user_id)
    except CreditError as exc:
        raise credit_http_error(exc) from exc


@router.post("/api-keys/toggle-byok")
async def toggle_byok(
    request: ToggleByokRequest,
    _rate_limit: None = Depends(rate_limit("byok_toggle", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    try:
        await _ready_wallet(db, ledger, auth.user_id)
        status = await vault.set_enabled(auth.user_id, request.enabled)
    except CreditError as exc:
        raise credit_http_error(exc) from exc
    return {"ok": True, **status.as_dict()}
