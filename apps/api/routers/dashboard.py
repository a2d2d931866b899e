"""Dashboard router."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.dashboard import dashboard_stats_service

router = APIRouter()


@router.get("/dashboard/stats")
async def dashboard_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_stats_service(user_id=auth.user_id, db=db)
