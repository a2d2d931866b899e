"""Places search: metered nearby search plus the user's search history."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.search_history import SearchHistory
from services.actions import run_billable_action, run_unmetered_action
from services.byok import CredentialVault
from services.credits import CreditLedger
from services.providers.places import DEFAULT_DETAIL_FIELDS, geocode_address, get_place_details, search_nearby
from services.providers.types import PlacesSearchResult

logger = logging.getLogger(__name__)

PLACES_PROVIDER = "places"
SEARCH_ACTION_TYPE = "google_search"
MAX_RADIUS_METERS = 50000


def parse_location(location: str) -> Tuple[float, float]:
    """Parse a 'lat,lng' pair."""
    try:
        lat_text, lng_text = str(location).split(",", 1)
        latitude, longitude = float(lat_text), float(lng_text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="location must be 'latitude,longitude'") from exc
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise HTTPException(status_code=400, detail="location is out of range")
    return latitude, longitude


def summarize_place(place: Dict[str, Any]) -> Dict[str, Any]:
    location = (place.get("geometry") or {}).get("location") or {}
    types = place.get("types") or []
    return {
        "place_id": place.get("place_id"),
        "business_name": place.get("name"),
        "address": place.get("vicinity") or place.get("formatted_address"),
        "rating": place.get("rating"),
        "total_ratings": place.get("user_ratings_total"),
        "business_type": types[0] if types else None,
        "latitude": location.get("lat"),
        "longitude": location.get("lng"),
        "business_status": place.get("business_status"),
    }


async def search_nearby_service(
    *,
    user_id: str,
    location: str,
    radius: int,
    keyword: str,
    place_type: str,
    ledger: CreditLedger,
    vault: CredentialVault,
    db: AsyncSession,
) -> Dict[str, Any]:
    keyword = (keyword or "").strip()
    if not keyword:
        raise HTTPException(status_code=400, detail="keyword is required")
    if radius <= 0 or radius > MAX_RADIUS_METERS:
        raise HTTPException(status_code=400, detail=f"radius must be between 1 and {MAX_RADIUS_METERS}")
    latitude, longitude = parse_location(location)

    async def _call(api_key: str):
        return await search_nearby(
            api_key,
            location=f"{latitude},{longitude}",
            radius=radius,
            keyword=keyword,
            place_type=place_type,
        )

    async def _save(result: PlacesSearchResult, charge) -> Dict[str, Any]:
        places = [summarize_place(place) for place in result.results]
        entry = SearchHistory(
            user_id=user_id,
            keyword=keyword,
            location=location,
            radius=radius,
            latitude=latitude,
            longitude=longitude,
            results_count=len(places),
            results_json={"leads": places},
        )
        db.add(entry)
        await db.commit()
        return {
            "search_id": entry.id,
            "status": result.status,
            "results": places,
            "next_page_token": result.next_page_token,
        }

    outcome = await run_billable_action(
        ledger=ledger,
        vault=vault,
        user_id=user_id,
        action_type=SEARCH_ACTION_TYPE,
        provider=PLACES_PROVIDER,
        call=_call,
        deliver=_save,
        metadata={"keyword": keyword, "radius": radius},
    )
    logger.info("places_search user=%s keyword=%s results=%s", user_id, keyword, len(outcome.value["results"]))
    return {**outcome.value, **outcome.credits_payload()}


async def geocode_service(*, user_id: str, address: str, vault: CredentialVault) -> Dict[str, Any]:
    """Unmetered address lookup used to centre a nearby search."""
    address = (address or "").strip()
    if not address:
        raise HTTPException(status_code=400, detail="Address parameter is required")

    async def _call(api_key: str):
        return await geocode_address(api_key, address)

    payload = await run_unmetered_action(vault=vault, user_id=user_id, provider=PLACES_PROVIDER, call=_call)
    results = []
    for item in payload["results"]:
        location = (item.get("geometry") or {}).get("location") or {}
        results.append(
            {
                "formatted_address": item.get("formatted_address"),
                "place_id": item.get("place_id"),
                "latitude": location.get("lat"),
                "longitude": location.get("lng"),
            }
        )
    return {"status": payload["status"], "results": results}


async def place_details_service(
    *, user_id: str, place_id: str, vault: CredentialVault, fields: Optional[str] = None
) -> Dict[str, Any]:
    """Unmetered contact details (phone, website) for one place."""
    place_id = (place_id or "").strip()
    if not place_id:
        raise HTTPException(status_code=400, detail="Place ID parameter is required")

    async def _call(api_key: str):
        return await get_place_details(api_key, place_id, fields=fields or DEFAULT_DETAIL_FIELDS)

    payload = await run_unmetered_action(vault=vault, user_id=user_id, provider=PLACES_PROVIDER, call=_call)
    return {"place_id": place_id, "status": payload["status"], "details": payload["result"]}


async def list_search_history_service(
    *, user_id: str, db: AsyncSession, page: int = 1, limit: int = 20
) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)
    total_result = await db.execute(select(func.count(SearchHistory.id)).where(SearchHistory.user_id == user_id))
    total = int(total_result.scalar() or 0)
    result = await db.execute(
        select(SearchHistory)
        .where(SearchHistory.user_id == user_id)
        .order_by(SearchHistory.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    searches: List[Dict[str, Any]] = []
    for row in result.scalars().all():
        searches.append(
            {
                "id": row.id,
                "keyword": row.keyword,
                "location": row.location,
                "radius": row.radius,
                "latitude": row.latitude,
                "longitude": row.longitude,
                "results_count": row.results_count,
                "results": row.results_json,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
        )
    return {
        "searches": searches,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }
