"""Routers package."""

from . import (
    health,
    credits,
    byok,
    billing,
    ai_tools,
    places,
    seo,
    campaigns,
)
