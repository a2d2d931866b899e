"""External provider clients (places search, text generation)."""

from services.providers.generation import generate_text, validate_generation_key
from services.providers.places import geocode_address, get_place_details, search_nearby, validate_places_key
from services.providers.types import (
    GenerationResult,
    PlacesSearchResult,
    ProviderAuthError,
    ProviderError,
)

DEFAULT_KEY_VALIDATORS = {
    "places": validate_places_key,
    "generation": validate_generation_key,
}

__all__ = [
    "DEFAULT_KEY_VALIDATORS",
    "GenerationResult",
    "PlacesSearchResult",
    "ProviderAuthError",
    "ProviderError",
    "generate_text",
    "geocode_address",
    "get_place_details",
    "search_nearby",
    "validate_generation_key",
    "validate_places_key",
]
