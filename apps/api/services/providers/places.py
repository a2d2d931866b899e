"""Google Places client used by places search and BYOK key checks."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config import settings
from services.providers.types import PlacesSearchResult, ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

PROVIDER_NAME = "places"
PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"
GEOCODING_BASE_URL = "https://maps.googleapis.com/maps/api/geocode"
_AUTH_STATUSES = {"REQUEST_DENIED"}
_OK_STATUSES = {"OK", "ZERO_RESULTS"}
DEFAULT_DETAIL_FIELDS = "formatted_phone_number,website,rating,user_ratings_total,url"


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(float(settings.PROVIDER_TIMEOUT_SECONDS))


def _raise_for_payload(payload: Dict[str, Any], http_status: int) -> None:
    status = str(payload.get("status", "")).upper()
    if http_status in (401, 403) or status in _AUTH_STATUSES:
        raise ProviderAuthError(
            PROVIDER_NAME,
            payload.get("error_message") or "Places API rejected the API key.",
            status_code=http_status,
        )
    if http_status >= 400 or (status and status not in _OK_STATUSES):
        raise ProviderError(
            PROVIDER_NAME,
            payload.get("error_message") or f"Places API error: {status or http_status}",
            status_code=http_status,
        )


async def _get_json(
    url: str,
    params: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=_timeout())
    try:
        response = await http.get(url, params=params)
    except httpx.HTTPError as exc:
        raise ProviderError(PROVIDER_NAME, f"Places API unavailable: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    _raise_for_payload(payload, response.status_code)
    return payload


async def search_nearby(
    api_key: str,
    *,
    location: str,
    radius: int,
    keyword: str,
    place_type: str = "establishment",
    client: Optional[httpx.AsyncClient] = None,
) -> PlacesSearchResult:
    """Run a Nearby Search with the supplied key."""
    params = {
        "location": location,
        "radius": radius,
        "keyword": keyword,
        "type": place_type,
        "key": api_key,
    }
    payload = await _get_json(f"{PLACES_BASE_URL}/nearbysearch/json", params, client)
    return PlacesSearchResult(
        status=str(payload.get("status", "OK")),
        results=list(payload.get("results") or []),
        next_page_token=payload.get("next_page_token"),
    )


async def geocode_address(
    api_key: str,
    address: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """Resolve a free-form address; ZERO_RESULTS comes back as an empty list."""
    payload = await _get_json(f"{GEOCODING_BASE_URL}/json", {"address": address, "key": api_key}, client)
    return {"status": str(payload.get("status", "OK")), "results": list(payload.get("results") or [])}


async def get_place_details(
    api_key: str,
    place_id: str,
    *,
    fields: str = DEFAULT_DETAIL_FIELDS,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    params = {"place_id": place_id, "fields": fields, "key": api_key}
    payload = await _get_json(f"{PLACES_BASE_URL}/details/json", params, client)
    return {"status": str(payload.get("status", "OK")), "result": payload.get("result") or {}}


async def validate_places_key(api_key: str) -> bool:
    """Geocode a sample address; a denied request means the key is unusable."""
    try:
        async with httpx.AsyncClient(timeout=_timeout()) as http:
            response = await http.get(
                f"{GEOCODING_BASE_URL}/json",
                params={"address": "test", "key": api_key},
            )
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Places key validation failed: %s", exc)
        return False
    return str(payload.get("status", "")).upper() not in _AUTH_STATUSES
