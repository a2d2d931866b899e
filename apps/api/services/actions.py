"""Billable action pipeline shared by the AI, places and SEO handlers."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from services.byok import CredentialVault
from services.credit_types import (
    CredentialInvalidError,
    DebitOutcome,
    DebitResult,
    InsufficientCreditsError,
    ResolvedCredential,
    UnknownActionError,
)
from services.credits import REASON_UNKNOWN_ACTION, CreditLedger
from services.providers.types import ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BillableOutcome(Generic[T]):
    value: T
    charge: DebitResult
    credential: ResolvedCredential

    def credits_payload(self) -> Dict[str, Any]:
        return {
            "credits_used": self.charge.credits_deducted,
            "new_balance": self.charge.balance,
            "using_own_keys": self.charge.using_own_keys,
        }


async def _rejected_credential_error(
    vault: CredentialVault,
    user_id: str,
    provider: str,
    credential: ResolvedCredential,
    exc: ProviderAuthError,
) -> Exception:
    """Invalidate a rejected user key; a rejected system key is an outage."""
    if credential.is_user_supplied:
        logger.warning("User %s key rejected by %s, switching to credits", user_id, provider)
        await vault.invalidate(user_id)
        return CredentialInvalidError(
            [provider],
            "Your API key was rejected by the provider. Please update your API keys; "
            "your account has been switched back to credits.",
        )
    logger.error("System %s credential rejected: %s", provider, exc)
    return ProviderError(provider, "Service temporarily unavailable.", status_code=exc.status_code)


async def run_unmetered_action(
    *,
    vault: CredentialVault,
    user_id: str,
    provider: str,
    call: Callable[[str], Awaitable[T]],
) -> T:
    """Call a provider with the user's resolved credential without charging."""
    credential = await vault.resolve_credential(user_id, provider)
    # No read transaction may stay open across the provider call.
    await vault.db.commit()
    try:
        return await call(credential.credential)
    except ProviderAuthError as exc:
        raise await _rejected_credential_error(vault, user_id, provider, credential, exc) from exc


async def run_billable_action(
    *,
    ledger: CreditLedger,
    vault: CredentialVault,
    user_id: str,
    action_type: str,
    provider: str,
    call: Callable[[str], Awaitable[Any]],
    deliver: Optional[Callable[[Any, DebitResult], Awaitable[T]]] = None,
    reference_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> BillableOutcome[T]:
    """Admit, charge, call the provider, then deliver the result.

    Every action here has a fixed price, so the debit is committed before the
    provider is called. ``deliver`` persists whatever the caller hands back
    to the user. Any failure after the charge, in the provider call or in
    delivery, rolls back the pending work and refunds the charge.
    """
    admission = await ledger.can_perform(user_id, action_type)
    if not admission.allowed:
        if admission.reason == REASON_UNKNOWN_ACTION:
            raise UnknownActionError(action_type)
        raise InsufficientCreditsError(admission.credits_required or 0, admission.current_balance or 0)

    credential = await vault.resolve_credential(user_id, provider)
    charge = await ledger.debit(user_id, action_type, reference_id=reference_id, metadata=metadata)
    if charge.outcome is DebitOutcome.INSUFFICIENT:
        raise InsufficientCreditsError(charge.credits_required, charge.balance)

    try:
        value = await call(credential.credential)
    except ProviderAuthError as exc:
        error = await _rejected_credential_error(vault, user_id, provider, credential, exc)
        reason = "credential_rejected" if credential.is_user_supplied else "system_credential_rejected"
        await ledger.refund(charge, user_id, reason=reason)
        raise error from exc
    except ProviderError:
        await ledger.refund(charge, user_id, reason="provider_error")
        raise
    except Exception:
        logger.exception("Provider call for %s failed for user %s", action_type, user_id)
        await ledger.db.rollback()
        await ledger.refund(charge, user_id, reason="provider_failure")
        raise

    if deliver is not None:
        try:
            value = await deliver(value, charge)
        except Exception:
            logger.exception("Delivery of %s failed for user %s", action_type, user_id)
            await ledger.db.rollback()
            await ledger.refund(charge, user_id, reason="delivery_failed")
            raise

    return BillableOutcome(value=value, charge=charge, credential=credential)
