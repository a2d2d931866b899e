"""Translate ledger, vault and provider failures into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from services.credit_types import (
    ByokConfigurationError,
    CredentialInvalidError,
    CreditError,
    InsufficientCreditsError,
    UnknownActionError,
    WalletNotFoundError,
)
from services.providers.types import ProviderError

RETRY_AFTER_SECONDS = "1"


def credit_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=402,
            detail={
                "code": "insufficient_credits",
                "message": "Insufficient credits",
                "credits_required": exc.credits_required,
                "current_balance": exc.current_balance,
            },
        )
    if isinstance(exc, CredentialInvalidError):
        return HTTPException(
            status_code=400,
            detail={
                "code": "credentials_invalid",
                "message": str(exc),
                "providers": exc.providers,
            },
        )
    if isinstance(exc, UnknownActionError):
        return HTTPException(
            status_code=400,
            detail={"code": "unknown_action", "message": str(exc), "action_type": exc.action_type},
        )
    if isinstance(exc, ByokConfigurationError):
        return HTTPException(status_code=400, detail={"code": "byok_configuration", "message": str(exc)})
    if isinstance(exc, WalletNotFoundError):
        return HTTPException(status_code=404, detail={"code": "wallet_not_found", "message": str(exc)})
    if isinstance(exc, CreditError) and exc.retryable:
        return HTTPException(
            status_code=503,
            detail={"code": "temporarily_unavailable", "message": "Please retry the request."},
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    if isinstance(exc, ProviderError):
        return HTTPException(
            status_code=502,
            detail={"code": "provider_error", "provider": exc.provider, "message": str(exc)},
        )
    if isinstance(exc, CreditError):
        return HTTPException(status_code=500, detail={"code": "credit_error", "message": str(exc)})
    raise TypeError(f"Unsupported error type: {type(exc).__name__}")
