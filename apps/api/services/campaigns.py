"""Campaign and saved-lead services."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from models.campaign_group import CampaignGroup
from models.saved_lead import SavedLead

LEAD_FIELDS = (
    "place_id",
    "business_name",
    "address",
    "phone",
    "website",
    "email",
    "rating",
    "total_ratings",
    "business_type",
    "latitude",
    "longitude",
    "notes",
    "tags",
)
LEAD_UPDATABLE_FIELDS = ("business_name", "address", "phone", "website", "email", "status", "notes", "tags", "is_favorite")
CAMPAIGN_UPDATABLE_FIELDS = ("name", "description", "status", "color", "tags")
GROUP_UPDATABLE_FIELDS = ("name", "description", "color", "icon", "sort_order")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _page_params(page: int, limit: int) -> tuple:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)
    return page, limit


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }


def serialize_campaign(campaign: Campaign, lead_count: int = 0) -> Dict[str, Any]:
    return {
        "id": campaign.id,
        "group_id": campaign.group_id,
        "name": campaign.name,
        "description": campaign.description,
        "status": campaign.status,
        "color": campaign.color,
        "tags": campaign.tags or [],
        "lead_count": int(lead_count or 0),
        "created_at": _iso(campaign.created_at),
        "updated_at": _iso(campaign.updated_at),
    }


def serialize_lead(lead: SavedLead) -> Dict[str, Any]:
    return {
        "id": lead.id,
        "campaign_id": lead.campaign_id,
        "search_id": lead.search_id,
        "place_id": lead.place_id,
        "business_name": lead.business_name,
        "address": lead.address,
        "phone": lead.phone,
        "website": lead.website,
        "email": lead.email,
        "rating": lead.rating,
        "total_ratings": lead.total_ratings,
        "business_type": lead.business_type,
        "latitude": lead.latitude,
        "longitude": lead.longitude,
        "status": lead.status,
        "notes": lead.notes,
        "tags": lead.tags or [],
        "is_favorite": bool(lead.is_favorite),
        "created_at": _iso(lead.created_at),
        "updated_at": _iso(lead.updated_at),
    }


async def _get_campaign(db: AsyncSession, user_id: str, campaign_id: str) -> Campaign:
    result = await db.execute(
        select(Campaign).where(
            Campaign.id == campaign_id,
            Campaign.user_id == user_id,
            Campaign.is_active.is_(True),
        )
    )
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


async def get_user_lead(db: AsyncSession, user_id: str, lead_id: str) -> SavedLead:
    result = await db.execute(select(SavedLead).where(SavedLead.id == lead_id, SavedLead.user_id == user_id))
    lead = result.scalar_one_or_none()
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


async def _lead_exists(db: AsyncSession, user_id: str, campaign_id: Optional[str], place_id: Optional[str]) -> bool:
    if not campaign_id or not place_id:
        return False
    result = await db.execute(
        select(SavedLead.id).where(
            SavedLead.user_id == user_id,
            SavedLead.campaign_id == campaign_id,
            SavedLead.place_id == place_id,
        )
    )
    return result.first() is not None


def serialize_group(group: CampaignGroup, campaigns_count: int = 0, total_leads: int = 0) -> Dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "color": group.color,
        "icon": group.icon,
        "sort_order": group.sort_order,
        "campaigns_count": int(campaigns_count or 0),
        "total_leads": int(total_leads or 0),
        "created_at": _iso(group.created_at),
        "updated_at": _iso(group.updated_at),
    }


async def get_user_group(db: AsyncSession, user_id: str, group_id: str) -> CampaignGroup:
    result = await db.execute(
        select(CampaignGroup).where(
            CampaignGroup.id == group_id,
            CampaignGroup.user_id == user_id,
            CampaignGroup.is_active.is_(True),
        )
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise HTTPException(status_code=404, detail="Campaign group not found")
    return group


async def list_groups_service(*, user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    """Active groups with counts over their active campaigns."""
    active_campaigns = (Campaign.user_id == user_id, Campaign.is_active.is_(True))
    campaign_counts = (
        select(Campaign.group_id, func.count(Campaign.id).label("campaigns_count"))
        .where(*active_campaigns)
        .group_by(Campaign.group_id)
        .subquery()
    )
    lead_totals = (
        select(Campaign.group_id, func.count(SavedLead.id).label("total_leads"))
        .join(SavedLead, SavedLead.campaign_id == Campaign.id)
        .where(*active_campaigns)
        .group_by(Campaign.group_id)
        .subquery()
    )
    result = await db.execute(
        select(CampaignGroup, campaign_counts.c.campaigns_count, lead_totals.c.total_leads)
        .outerjoin(campaign_counts, campaign_counts.c.group_id == CampaignGroup.id)
        .outerjoin(lead_totals, lead_totals.c.group_id == CampaignGroup.id)
        .where(CampaignGroup.user_id == user_id, CampaignGroup.is_active.is_(True))
        .order_by(CampaignGroup.sort_order.asc(), CampaignGroup.created_at.desc())
    )
    return [serialize_group(group, campaigns, leads) for group, campaigns, leads in result.all()]


async def create_group_service(*, user_id: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Group name is required")
    group = CampaignGroup(
        user_id=user_id,
        name=name,
        description=payload.get("description"),
        color=payload.get("color") or "#3B82F6",
        icon=payload.get("icon") or "folder",
        sort_order=payload.get("sort_order") or 0,
    )
    db.add(group)
    await db.commit()
    await db.refresh(group)
    return serialize_group(group)


async def update_group_service(
    *, user_id: str, group_id: str, payload: Dict[str, Any], db: AsyncSession
) -> Dict[str, Any]:
    group = await get_user_group(db, user_id, group_id)
    for field in GROUP_UPDATABLE_FIELDS:
        if payload.get(field) is not None:
            setattr(group, field, payload[field])
    await db.commit()
    await db.refresh(group)
    return serialize_group(group)


async def delete_group_service(*, user_id: str, group_id: str, db: AsyncSession) -> None:
    """Soft-delete; campaigns in the group become ungrouped."""
    group = await get_user_group(db, user_id, group_id)
    group.is_active = False
    await db.execute(
        update(Campaign)
        .where(Campaign.group_id == group.id, Campaign.user_id == user_id)
        .values(group_id=None)
    )
    await db.commit()


async def list_campaigns_service(
    *, user_id: str, db: AsyncSession, group_id: Optional[str] = None, status: Optional[str] = None
) -> List[Dict[str, Any]]:
    filters = [Campaign.user_id == user_id, Campaign.is_active.is_(True)]
    if group_id:
        filters.append(Campaign.group_id == group_id)
    if status:
        filters.append(Campaign.status == status)
    lead_counts = (
        select(SavedLead.campaign_id, func.count(SavedLead.id).label("lead_count"))
        .where(SavedLead.user_id == user_id)
        .group_by(SavedLead.campaign_id)
        .subquery()
    )
    result = await db.execute(
        select(Campaign, lead_counts.c.lead_count)
        .outerjoin(lead_counts, lead_counts.c.campaign_id == Campaign.id)
        .where(*filters)
        .order_by(Campaign.created_at.desc())
    )
    return [serialize_campaign(campaign, count) for campaign, count in result.all()]


async def get_campaign_service(*, user_id: str, campaign_id: str, db: AsyncSession) -> Dict[str, Any]:
    campaign = await _get_campaign(db, user_id, campaign_id)
    count_result = await db.execute(select(func.count(SavedLead.id)).where(SavedLead.campaign_id == campaign.id))
    return serialize_campaign(campaign, count_result.scalar() or 0)


async def create_campaign_service(*, user_id: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Campaign name is required")
    group_id = payload.get("group_id")
    if group_id:
        await get_user_group(db, user_id, group_id)
    campaign = Campaign(
        user_id=user_id,
        group_id=group_id or None,
        name=name,
        description=payload.get("description"),
        color=payload.get("color") or "#10B981",
        tags=payload.get("tags") or [],
    )
    db.add(campaign)
    await db.commit()
    await db.refresh(campaign)
    return serialize_campaign(campaign)


async def update_campaign_service(
    *, user_id: str, campaign_id: str, payload: Dict[str, Any], db: AsyncSession
) -> Dict[str, Any]:
    campaign = await _get_campaign(db, user_id, campaign_id)
    if payload.get("group_id"):
        await get_user_group(db, user_id, payload["group_id"])
        campaign.group_id = payload["group_id"]
    for field in CAMPAIGN_UPDATABLE_FIELDS:
        if payload.get(field) is not None:
            setattr(campaign, field, payload[field])
    await db.commit()
    await db.refresh(campaign)
    return serialize_campaign(campaign)


async def delete_campaign_service(*, user_id: str, campaign_id: str, db: AsyncSession) -> None:
    """Soft-delete; saved leads are detached from the campaign."""
    campaign = await _get_campaign(db, user_id, campaign_id)
    campaign.is_active = False
    await db.execute(
        update(SavedLead)
        .where(SavedLead.campaign_id == campaign.id, SavedLead.user_id == user_id)
        .values(campaign_id=None)
    )
    await db.commit()


async def list_leads_service(
    *,
    user_id: str,
    db: AsyncSession,
    campaign_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    favorite: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    page, limit = _page_params(page, limit)
    if campaign_id:
        await _get_campaign(db, user_id, campaign_id)

    filters = [SavedLead.user_id == user_id]
    if campaign_id:
        filters.append(SavedLead.campaign_id == campaign_id)
    if status:
        filters.append(SavedLead.status == status)
    if favorite:
        filters.append(SavedLead.is_favorite.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(
            or_(
                SavedLead.business_name.ilike(pattern),
                SavedLead.address.ilike(pattern),
                SavedLead.email.ilike(pattern),
            )
        )

    total_result = await db.execute(select(func.count(SavedLead.id)).where(*filters))
    total = int(total_result.scalar() or 0)
    result = await db.execute(
        select(SavedLead)
        .where(*filters)
        .order_by(SavedLead.is_favorite.desc(), SavedLead.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "items": [serialize_lead(lead) for lead in result.scalars().all()],
        "pagination": _pagination(page, limit, total),
    }


def _lead_from_payload(user_id: str, campaign_id: Optional[str], payload: Dict[str, Any]) -> SavedLead:
    values = {field: payload.get(field) for field in LEAD_FIELDS}
    values["tags"] = values.get("tags") or []
    return SavedLead(user_id=user_id, campaign_id=campaign_id, search_id=payload.get("search_id"), **values)


async def save_lead_service(*, user_id: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    if not str(payload.get("business_name") or "").strip():
        raise HTTPException(status_code=400, detail="Business name is required")
    campaign_id = payload.get("campaign_id")
    if campaign_id:
        await _get_campaign(db, user_id, campaign_id)
    if await _lead_exists(db, user_id, campaign_id, payload.get("place_id")):
        raise HTTPException(status_code=409, detail="Lead already exists in this campaign")

    lead = _lead_from_payload(user_id, campaign_id, payload)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    return serialize_lead(lead)


async def save_leads_bulk_service(
    *, user_id: str, campaign_id: Optional[str], leads: List[Dict[str, Any]], db: AsyncSession
) -> Dict[str, Any]:
    """Save many leads in one transaction, skipping duplicates."""
    if not leads:
        raise HTTPException(status_code=400, detail="Leads array is required")
    if campaign_id:
        await _get_campaign(db, user_id, campaign_id)

    saved: List[SavedLead] = []
    skipped: List[Dict[str, Any]] = []
    seen_place_ids = set()
    for payload in leads:
        place_id = payload.get("place_id")
        if not str(payload.get("business_name") or "").strip():
            skipped.append({**payload, "reason": "Business name is required"})
            continue
        duplicate = campaign_id and place_id and place_id in seen_place_ids
        if duplicate or await _lead_exists(db, user_id, campaign_id, place_id):
            skipped.append({**payload, "reason": "Already exists"})
            continue
        lead = _lead_from_payload(user_id, campaign_id, payload)
        db.add(lead)
        saved.append(lead)
        if place_id:
            seen_place_ids.add(place_id)

    await db.commit()
    for lead in saved:
        await db.refresh(lead)
    return {
        "saved": [serialize_lead(lead) for lead in saved],
        "skipped": skipped,
        "message": f"{len(saved)} leads saved, {len(skipped)} skipped",
    }


async def update_lead_service(
    *, user_id: str, lead_id: str, payload: Dict[str, Any], db: AsyncSession
) -> Dict[str, Any]:
    lead = await get_user_lead(db, user_id, lead_id)
    for field in LEAD_UPDATABLE_FIELDS:
        if payload.get(field) is not None:
            setattr(lead, field, payload[field])
    await db.commit()
    await db.refresh(lead)
    return serialize_lead(lead)


async def delete_lead_service(*, user_id: str, lead_id: str, db: AsyncSession) -> None:
    lead = await get_user_lead(db, user_id, lead_id)
    await db.delete(lead)
    await db.commit()


async def move_leads_service(
    *, user_id: str, lead_ids: List[str], target_campaign_id: Optional[str], db: AsyncSession
) -> Dict[str, Any]:
    if not lead_ids:
        raise HTTPException(status_code=400, detail="Lead ids array is required")
    if target_campaign_id:
        await _get_campaign(db, user_id, target_campaign_id)
    result = await db.execute(
        select(SavedLead).where(SavedLead.id.in_(lead_ids), SavedLead.user_id == user_id)
    )
    leads = result.scalars().all()
    for lead in leads:
        lead.campaign_id = target_campaign_id
    await db.commit()
    for lead in leads:
        await db.refresh(lead)
    return {
        "moved": len(leads),
        "items": [serialize_lead(lead) for lead in leads],
        "message": f"{len(leads)} leads moved successfully",
    }


async def toggle_favorite_service(*, user_id: str, lead_id: str, db: AsyncSession) -> Dict[str, Any]:
    lead = await get_user_lead(db, user_id, lead_id)
    lead.is_favorite = not bool(lead.is_favorite)
    await db.commit()
    await db.refresh(lead)
    return {
        "lead": serialize_lead(lead),
        "message": "Added to favorites" if lead.is_favorite else "Removed from favorites",
    }
