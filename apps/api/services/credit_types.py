"""Credit ledger and BYOK contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


Provider = Literal["places", "generation"]
PROVIDERS: tuple = ("places", "generation")


class CreditError(RuntimeError):
    """Base class for credit ledger and key vault failures."""

    retryable = False


class UnknownActionError(CreditError):
    """Raised when an action type has no active price."""

    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class InsufficientCreditsError(CreditError):
    """Raised when a wallet cannot cover an action's price."""

    def __init__(self, credits_required: int, current_balance: int) -> None:
        super().__init__(
            f"Insufficient credits. Required: {credits_required}, available: {current_balance}."
        )
        self.credits_required = credits_required
        self.current_balance = current_balance


class WalletNotFoundError(CreditError):
    """Raised when a mutation targets a wallet row that does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User credits not found for {user_id}")
        self.user_id = user_id


class CredentialInvalidError(CreditError):
    """Raised when user-supplied provider credentials are rejected."""

    def __init__(self, providers: List[str], message: Optional[str] = None) -> None:
        super().__init__(message or "Your API keys are invalid. Please update them.")
        self.providers = list(providers)


class ByokConfigurationError(CreditError):
    """Raised when BYOK mode cannot be changed with the stored credentials."""


class TransientStoreError(CreditError):
    """Lock timeout or lost connection. Retry the whole operation."""

    retryable = True


class DebitOutcome(str, Enum):
    EXEMPT = "exempt"
    INSUFFICIENT = "insufficient"
    CHARGED = "charged"


@dataclass(frozen=True)
class DebitResult:
    outcome: DebitOutcome
    action_type: str
    credits_required: int
    credits_deducted: int
    balance: int
    transaction_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.outcome is not DebitOutcome.INSUFFICIENT

    @property
    def using_own_keys(self) -> bool:
        return self.outcome is DebitOutcome.EXEMPT

    def as_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "action_type": self.action_type,
            "credits_required": self.credits_required,
            "credits_deducted": self.credits_deducted,
            "balance": self.balance,
            "using_own_keys": self.using_own_keys,
        }


@dataclass(frozen=True)
class CreditResult:
    credits_added: int
    balance: int
    transaction_id: Optional[int] = None


@dataclass(frozen=True)
class Admission:
    allowed: bool
    reason: Optional[str] = None
    credits_required: Optional[int] = None
    current_balance: Optional[int] = None
    using_own_keys: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "credits_required": self.credits_required,
            "current_balance": self.current_balance,
            "using_own_keys": self.using_own_keys,
        }


@dataclass(frozen=True)
class ResolvedCredential:
    provider: str
    credential: str
    is_user_supplied: bool


@dataclass(frozen=True)
class ByokStatus:
    use_own_keys: bool
    keys_valid: bool
    has_places_key: bool
    has_generation_key: bool
    keys_last_checked: Optional[str] = None
    provider_validity: Dict[str, bool] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "use_own_keys": self.use_own_keys,
            "keys_valid": self.keys_valid,
            "has_places_key": self.has_places_key,
            "has_generation_key": self.has_generation_key,
            "keys_last_checked": self.keys_last_checked,
            "provider_validity": dict(self.provider_validity),
        }
