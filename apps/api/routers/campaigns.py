"""Campaigns and saved leads router."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user
from services.campaigns import (
    create_campaign_service,
    create_group_service,
    delete_campaign_service,
    delete_group_service,
    delete_lead_service,
    get_campaign_service,
    list_campaigns_service,
    list_groups_service,
    list_leads_service,
    move_leads_service,
    save_lead_service,
    save_leads_bulk_service,
    toggle_favorite_service,
    update_campaign_service,
    update_group_service,
    update_lead_service,
)

router = APIRouter()


class CampaignRequest(BaseModel):
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    tags: Optional[List[str]] = None
    group_id: Optional[str] = None


class CampaignUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    tags: Optional[List[str]] = None
    group_id: Optional[str] = None


class CampaignGroupRequest(BaseModel):
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    icon: Optional[str] = Field(default=None, max_length=64)
    sort_order: Optional[int] = None


class CampaignGroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=16)
    icon: Optional[str] = Field(default=None, max_length=64)
    sort_order: Optional[int] = None


class LeadRequest(BaseModel):
    campaign_id: Optional[str] = None
    search_id: Optional[str] = None
    place_id: Optional[str] = None
    business_name: str = Field(default="", max_length=255)
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    rating: Optional[float] = None
    total_ratings: Optional[int] = None
    business_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class BulkLeadsRequest(BaseModel):
    campaign_id: Optional[str] = None
    leads: List[Dict[str, Any]] = Field(default_factory=list, max_length=500)


class LeadUpdateRequest(BaseModel):
    business_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    is_favorite: Optional[bool] = None


class MoveLeadsRequest(BaseModel):
    lead_ids: List[str] = Field(default_factory=list)
    target_campaign_id: Optional[str] = None


@router.get("/campaign-groups")
async def list_campaign_groups(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"items": await list_groups_service(user_id=auth.user_id, db=db)}


@router.post("/campaign-groups", status_code=201)
async def create_campaign_group(
    request: CampaignGroupRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    return await create_group_service(user_id=auth.user_id, payload=request.model_dump(), db=db)


@router.put("/campaign-groups/{group_id}")
async def update_campaign_group(
    group_id: str,
    request: CampaignGroupUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await update_group_service(
        user_id=auth.user_id,
        group_id=group_id,
        payload=request.model_dump(exclude_none=True),
        db=db,
    )


@router.delete("/campaign-groups/{group_id}")
async def delete_campaign_group(
    group_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await delete_group_service(user_id=auth.user_id, group_id=group_id, db=db)
    return {"ok": True}


@router.get("/campaigns")
async def list_campaigns(
    group_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    items = await list_campaigns_service(user_id=auth.user_id, db=db, group_id=group_id, status=status)
    return {"items": items}


@router.post("/campaigns", status_code=201)
async def create_campaign(
    request: CampaignRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    return await create_campaign_service(user_id=auth.user_id, payload=request.model_dump(), db=db)


@router.get("/campaigns/{campaign_id}")
async def get_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_campaign_service(user_id=auth.user_id, campaign_id=campaign_id, db=db)


@router.put("/campaigns/{campaign_id}")
async def update_campaign(
    campaign_id: str,
    request: CampaignUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await update_campaign_service(
        user_id=auth.user_id,
        campaign_id=campaign_id,
        payload=request.model_dump(exclude_none=True),
        db=db,
    )


@router.delete("/campaigns/{campaign_id}")
async def delete_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await delete_campaign_service(user_id=auth.user_id, campaign_id=campaign_id, db=db)
    return {"ok": True}


@router.get("/campaigns/{campaign_id}/leads")
async def campaign_leads(
    campaign_id: str,
    status: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    favorite: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_leads_service(
        user_id=auth.user_id,
        db=db,
        campaign_id=campaign_id,
        status=status,
        search=search,
        favorite=favorite,
        page=page,
        limit=limit,
    )


@router.get("/leads")
async def list_leads(
    status: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    favorite: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_leads_service(
        user_id=auth.user_id,
        db=db,
        status=status,
        search=search,
        favorite=favorite,
        page=page,
        limit=limit,
    )


@router.post("/leads", status_code=201)
async def save_lead(
    request: LeadRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    return await save_lead_service(user_id=auth.user_id, payload=request.model_dump(), db=db)


@router.post("/leads/bulk", status_code=201)
async def save_leads_bulk(
    request: BulkLeadsRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    return await save_leads_bulk_service(
        user_id=auth.user_id,
        campaign_id=request.campaign_id,
        leads=request.leads,
        db=db,
    )


@router.post("/leads/move")
async def move_leads(
    request: MoveLeadsRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await move_leads_service(
        user_id=auth.user_id,
        lead_ids=request.lead_ids,
        target_campaign_id=request.target_campaign_id,
        db=db,
    )


@router.put("/leads/{lead_id}")
async def update_lead(
    lead_id: str,
    request: LeadUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await update_lead_service(
        user_id=auth.user_id,
        lead_id=lead_id,
        payload=request.model_dump(exclude_none=True),
        db=db,
    )


@router.delete("/leads/{lead_id}")
async def delete_lead(
    lead_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await delete_lead_service(user_id=auth.user_id, lead_id=lead_id, db=db)
    return {"ok": True}


@router.post("/leads/{lead_id}/favorite")
async def toggle_favorite(
    lead_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_favorite_service(user_id=auth.user_id, lead_id=lead_id, db=db)
