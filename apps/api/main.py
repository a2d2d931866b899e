"""
Lead Outreach API - FastAPI Backend
Main application entry point: credits, BYOK keys, billing and billable tools.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

from config import settings, validate_security_settings
from database import async_session_maker, engine, Base
import models  # noqa: F401
from routers import (
    health,
    credits,
    byok,
    billing,
    ai_tools,
    places,
    seo,
    campaigns,
    dashboard,
    google,
)
from services.plans import seed_plans
from services.pricing import seed_credit_costs
from services.templates import seed_templates


async def _seed_reference_data() -> None:
    async with async_session_maker() as session:
        created_costs = await seed_credit_costs(session, settings.DEFAULT_CREDIT_COSTS)
        created_plans = await seed_plans(session)
        created_templates = await seed_templates(session)
    if created_costs or created_plans or created_templates:
        print(
            f"🌱 Seeded {created_costs} credit costs, {created_plans} plans "
            f"and {created_templates} templates."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Lead Outreach API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except (SQLAlchemyError, OSError) as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        await _seed_reference_data()
    except (SQLAlchemyError, OSError) as exc:
        print(f"⚠️ Reference data seeding skipped: {exc}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Lead Outreach API",
    description="Find local businesses, write outreach with AI and pay per use with credits",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(credits.router, tags=["Credits"])
app.include_router(byok.router, tags=["API Keys"])
app.include_router(billing.router, tags=["Billing"])
app.include_router(ai_tools.router, prefix="/ai", tags=["AI Tools"])
app.include_router(places.router, prefix="/places", tags=["Places"])
app.include_router(seo.router, prefix="/seo", tags=["SEO"])
app.include_router(campaigns.router, tags=["Campaigns"])
app.include_router(google.router, prefix="/google", tags=["Google"])
app.include_router(dashboard.router, tags=["Dashboard"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Lead Outreach API",
        "version": "0.1.0",
        "status": "running"
    }
