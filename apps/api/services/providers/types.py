"""Provider call contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ProviderError(RuntimeError):
    """Raised when an external provider call fails."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Provider rejected the credential itself (not a transient failure)."""


@dataclass(frozen=True)
class GenerationResult:
    content: str
    model: str
    usage: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PlacesSearchResult:
    status: str
    results: List[Dict[str, Any]]
    next_page_token: Optional[str] = None
