"""Bring-your-own-key vault: stored provider credentials and BYOK mode.

Credentials live encrypted on the wallet row; ``use_own_keys`` and
``keys_valid`` are shared by every provider, so one rejected key switches the
whole wallet back to metered credits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.wallet import Wallet
from services.credit_types import (
    PROVIDERS,
    ByokConfigurationError,
    ByokStatus,
    CredentialInvalidError,
    ResolvedCredential,
    WalletNotFoundError,
)
from services.crypto import decrypt_optional, encrypt_secret
from services.wallets import load_wallet, locked_wallet

logger = logging.getLogger(__name__)

KeyValidator = Callable[[str], Awaitable[bool]]

_CREDENTIAL_COLUMNS = {
    "places": "places_api_key_encrypted",
    "generation": "generation_api_key_encrypted",
}
REMOVABLE_KEY_TYPES = ("places", "generation", "all")


@dataclass(frozen=True)
class SystemCredentials:
    """Shared credentials used whenever a user key does not apply."""

    places: str = ""
    generation: str = ""

    def for_provider(self, provider: str) -> str:
        if provider not in _CREDENTIAL_COLUMNS:
            raise ValueError(f"Unknown provider: {provider}")
        return getattr(self, provider)


def _stored_ciphertexts(wallet: Optional[Wallet]) -> Dict[str, Optional[str]]:
    if wallet is None:
        return {provider: None for provider in PROVIDERS}
    return {provider: getattr(wallet, column) for provider, column in _CREDENTIAL_COLUMNS.items()}


def _status_from_wallet(wallet: Optional[Wallet], provider_validity: Optional[Dict[str, bool]] = None) -> ByokStatus:
    if wallet is None:
        return ByokStatus(
            use_own_keys=False,
            keys_valid=False,
            has_places_key=False,
            has_generation_key=False,
            provider_validity=provider_validity or {},
        )
    return ByokStatus(
        use_own_keys=bool(wallet.use_own_keys),
        keys_valid=bool(wallet.keys_valid),
        has_places_key=bool(wallet.places_api_key_encrypted),
        has_generation_key=bool(wallet.generation_api_key_encrypted),
        keys_last_checked=wallet.keys_last_checked.isoformat() if wallet.keys_last_checked else None,
        provider_validity=provider_validity or {},
    )


class CredentialVault:
    """Resolves which credential a provider call should use."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        system_credentials: SystemCredentials,
        validators: Mapping[str, KeyValidator],
        lock_timeout_ms: Optional[int] = None,
    ) -> None:
        self.db = db
        self.system_credentials = system_credentials
        self.validators = dict(validators)
        self.lock_timeout_ms = lock_timeout_ms

    def _system(self, provider: str) -> ResolvedCredential:
        return ResolvedCredential(
            provider=provider,
            credential=self.system_credentials.for_provider(provider),
            is_user_supplied=False,
        )

    async def resolve_credential(self, user_id: str, provider: str) -> ResolvedCredential:
        """Return the user's key when BYOK is active and stored, else the system key."""
        fallback = self._system(provider)
        try:
            wallet = await load_wallet(self.db, user_id)
        except SQLAlchemyError as exc:
            logger.warning("Credential lookup failed for user %s, using system key: %s", user_id, exc)
            return fallback

        if wallet is None or not wallet.byok_active:
            return fallback
        ciphertext = _stored_ciphertexts(wallet)[provider]
        if not ciphertext:
            return fallback
        try:
            credential = decrypt_optional(ciphertext)
        except ValueError as exc:
            logger.warning("Stored %s key for user %s is unreadable, using system key: %s", provider, user_id, exc)
            return fallback
        return ResolvedCredential(provider=provider, credential=credential, is_user_supplied=True)

    async def invalidate(self, user_id: str) -> None:
        """Switch the wallet back to metered credits after a key rejection."""
        try:
            async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as wallet:
                wallet.use_own_keys = False
                wallet.keys_valid = False
                wallet.keys_last_checked = datetime.now(timezone.utc)
        except WalletNotFoundError:
            logger.info("invalidate skipped, no wallet for user %s", user_id)
            return
        logger.warning("byok_invalidated user=%s", user_id)

    async def _verify(self, provider: str, credential: str) -> bool:
        validator = self.validators.get(provider)
        if validator is None:
            raise ByokConfigurationError(f"No key validator configured for {provider}.")
        return bool(await validator(credential))

    async def _snapshot(self, user_id: str) -> Dict[str, Optional[str]]:
        """Read stored ciphertexts, then end the read before any network I/O."""
        wallet = await load_wallet(self.db, user_id)
        if wallet is None:
            await self.db.rollback()
            raise WalletNotFoundError(user_id)
        ciphertexts = _stored_ciphertexts(wallet)
        await self.db.rollback()
        return ciphertexts

    async def set_enabled(self, user_id: str, enabled: bool) -> ByokStatus:
        """Turn BYOK on (all stored keys must verify) or off. All-or-nothing."""
        if not enabled:
            async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as wallet:
                wallet.use_own_keys = False
                wallet.keys_valid = False
                status = _status_from_wallet(wallet)
            logger.info("byok_disabled user=%s", user_id)
            return status

        ciphertexts = await self._snapshot(user_id)
        present = {provider: value for provider, value in ciphertexts.items() if value}
        if not present:
            raise ByokConfigurationError("Please add at least one API key before enabling BYOK mode.")

        validity: Dict[str, bool] = {}
        for provider, ciphertext in present.items():
            try:
                credential = decrypt_optional(ciphertext)
            except ValueError:
                validity[provider] = False
                continue
            validity[provider] = await self._verify(provider, credential)
        failed = [provider for provider, ok in validity.items() if not ok]
        if failed:
            logger.info("byok_enable_rejected user=%s providers=%s", user_id, ",".join(failed))
            raise CredentialInvalidError(failed)

        async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as wallet:
            if _stored_ciphertexts(wallet) != ciphertexts:
                raise ByokConfigurationError("API keys changed while they were being verified. Try again.")
            wallet.use_own_keys = True
            wallet.keys_valid = True
            wallet.keys_last_checked = datetime.now(timezone.utc)
            status = _status_from_wallet(wallet, validity)
        logger.info("byok_enabled user=%s providers=%s", user_id, ",".join(sorted(present)))
        return status

    async def save_credentials(
        self,
        user_id: str,
        *,
        places_key: Optional[str] = None,
        generation_key: Optional[str] = None,
        enable: bool = False,
    ) -> ByokStatus:
        """Verify and store supplied keys; unsupplied keys stay as they are."""
        supplied = {
            provider: (value or "").strip()
            for provider, value in (("places", places_key), ("generation", generation_key))
            if value and value.strip()
        }
        validity: Dict[str, bool] = {}
        for provider, credential in supplied.items():
            validity[provider] = await self._verify(provider, credential)
        failed = [provider for provider, ok in validity.items() if not ok]
        if failed:
            raise CredentialInvalidError(failed, f"Invalid {', '.join(failed)} API key.")

        async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as wallet:
            previously_valid = bool(wallet.keys_valid)
            for provider, credential in supplied.items():
                setattr(wallet, _CREDENTIAL_COLUMNS[provider], encrypt_secret(credential))
            stored = _stored_ciphertexts(wallet)
            has_any = any(stored.values())
            unverified_others = any(value for provider, value in stored.items() if provider not in supplied)
            keys_valid = has_any and (previously_valid or not unverified_others)
            if enable and not has_any:
                raise ByokConfigurationError("Please add at least one API key before enabling BYOK mode.")
            if enable and not keys_valid:
                raise ByokConfigurationError("Stored API keys are not verified. Verify them before enabling BYOK.")
            wallet.use_own_keys = bool(enable)
            wallet.keys_valid = keys_valid
            wallet.keys_last_checked = datetime.now(timezone.utc)
            status = _status_from_wallet(wallet, validity)
        logger.info(
            "byok_keys_saved user=%s providers=%s enabled=%s",
            user_id,
            ",".join(sorted(supplied)) or "-",
            bool(enable),
        )
        return status

    async def remove_credentials(self, user_id: str, key_type: str = "all") -> ByokStatus:
        if key_type not in REMOVABLE_KEY_TYPES:
            raise ByokConfigurationError(f"key_type must be one of {', '.join(REMOVABLE_KEY_TYPES)}.")
        providers = PROVIDERS if key_type == "all" else (key_type,)
        async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as wallet:
            for provider in providers:
                setattr(wallet, _CREDENTIAL_COLUMNS[provider], None)
            wallet.keys_valid = False
            if key_type == "all" or not any(_stored_ciphertexts(wallet).values()):
                wallet.use_own_keys = False
            status = _status_from_wallet(wallet)
        logger.info("byok_keys_removed user=%s key_type=%s", user_id, key_type)
        return status

    async def verify_and_switch(self, user_id: str) -> Dict[str, object]:
        """Re-check a BYOK user's stored keys, switching to credits on failure."""
        wallet = await load_wallet(self.db, user_id)
        if wallet is None or not wallet.use_own_keys:
            await self.db.rollback()
            return {"using_own_keys": False, "keys_valid": False, "switched_to_credits": False}
        ciphertexts = await self._snapshot(user_id)

        validity: Dict[str, bool] = {}
        for provider, ciphertext in ciphertexts.items():
            if not ciphertext:
                continue
            try:
                validity[provider] = await self._verify(provider, decrypt_optional(ciphertext))
            except ValueError:
                validity[provider] = False
        all_valid = bool(validity) and all(validity.values())

        if not all_valid:
            await self.invalidate(user_id)
        else:
            async with locked_wallet(self.db, user_id, lock_timeout_ms=self.lock_timeout_ms) as locked:
                locked.keys_valid = True
                locked.keys_last_checked = datetime.now(timezone.utc)
        return {
            "using_own_keys": all_valid,
            "keys_valid": all_valid,
            "provider_validity": validity,
            "switched_to_credits": not all_valid,
        }

    async def status(self, user_id: str) -> ByokStatus:
        return _status_from_wallet(await load_wallet(self.db, user_id))
