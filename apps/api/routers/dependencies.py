"""Shared FastAPI dependencies for the credit ledger and key vault."""

from __future__ import annotations

from typing import Dict

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import User
from services.byok import CredentialVault, KeyValidator, SystemCredentials
from services.credits import CreditLedger
from services.pricing import PricingResolver
from services.providers import DEFAULT_KEY_VALIDATORS


async def ensure_user(db: AsyncSession, user_id: str) -> User:
    """Make sure the authenticated user has a users row before wallet access."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(id=user_id, email=f"{user_id}@local.invalid")
    db.add(user)
    await db.commit()
    return user


def get_system_credentials() -> SystemCredentials:
    return SystemCredentials(
        places=settings.GOOGLE_PLACES_API_KEY,
        generation=settings.OPENAI_API_KEY,
    )


def get_key_validators() -> Dict[str, KeyValidator]:
    return dict(DEFAULT_KEY_VALIDATORS)


def get_pricing(db: AsyncSession = Depends(get_db)) -> PricingResolver:
    return PricingResolver(db)


def get_credit_ledger(
    db: AsyncSession = Depends(get_db),
    pricing: PricingResolver = Depends(get_pricing),
) -> CreditLedger:
    return CreditLedger(
        db,
        pricing=pricing,
        trial_credits=settings.TRIAL_CREDITS,
        lock_timeout_ms=settings.WALLET_LOCK_TIMEOUT_MS,
    )


def get_credential_vault(
    db: AsyncSession = Depends(get_db),
    system_credentials: SystemCredentials = Depends(get_system_credentials),
    validators: Dict[str, KeyValidator] = Depends(get_key_validators),
) -> CredentialVault:
    return CredentialVault(
        db,
        system_credentials=system_credentials,
        validators=validators,
        lock_timeout_ms=settings.WALLET_LOCK_TIMEOUT_MS,
    )
