"""Dashboard summary: wallet totals, resource counts and recent activity."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.ai_document import AIDocument
from models.campaign import Campaign
from models.saved_lead import SavedLead
from models.search_history import SearchHistory
from services.wallets import load_wallet

RECENT_ACTIVITY_LIMIT = 10


async def _count(db: AsyncSession, column, *filters) -> int:
    result = await db.execute(select(func.count(column)).where(*filters))
    return int(result.scalar() or 0)


def _activity(kind: str, item_id: str, title: str, created_at: datetime) -> Dict[str, Any]:
    return {"type": kind, "id": item_id, "title": title, "created_at": created_at}


async def _recent_activity(db: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
    searches = await db.execute(
        select(SearchHistory.id, SearchHistory.keyword, SearchHistory.created_at)
        .where(SearchHistory.user_id == user_id)
        .order_by(SearchHistory.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    )
    leads = await db.execute(
        select(SavedLead.id, SavedLead.business_name, SavedLead.created_at)
        .where(SavedLead.user_id == user_id)
        .order_by(SavedLead.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    )
    documents = await db.execute(
        select(AIDocument.id, AIDocument.document_type, AIDocument.title, AIDocument.created_at)
        .where(AIDocument.user_id == user_id)
        .order_by(AIDocument.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    )

    items = [_activity("search", row.id, row.keyword, row.created_at) for row in searches.all()]
    items += [_activity("lead", row.id, row.business_name, row.created_at) for row in leads.all()]
    items += [_activity(row.document_type, row.id, row.title, row.created_at) for row in documents.all()]
    items.sort(key=lambda item: item["created_at"] or datetime.min, reverse=True)

    recent = items[:RECENT_ACTIVITY_LIMIT]
    for item in recent:
        item["created_at"] = item["created_at"].isoformat() if item["created_at"] else None
    return recent


async def dashboard_stats_service(*, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Read-only; a user without a wallet sees zero credits and none is created."""
    wallet = await load_wallet(db, user_id)
    stats = {
        "credits": {
            "balance": wallet.credits_balance if wallet else 0,
            "used": wallet.credits_used if wallet else 0,
        },
        "campaigns": await _count(db, Campaign.id, Campaign.user_id == user_id, Campaign.is_active.is_(True)),
        "leads": await _count(db, SavedLead.id, SavedLead.user_id == user_id),
        "documents": await _count(db, AIDocument.id, AIDocument.user_id == user_id),
        "searches": await _count(db, SearchHistory.id, SearchHistory.user_id == user_id),
        "recent_activity": await _recent_activity(db, user_id),
    }
    await db.commit()
    return stats
