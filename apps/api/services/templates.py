"""AI writing templates: shared system templates plus each user's own."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.template import Template

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "template_type": "email",
        "name": "Cold introduction",
        "subject": "Quick idea for {{business_name}}",
        "content": (
            "Hi {{contact_name}},\n\nI came across {{business_name}} and had an idea that could bring "
            "you more customers. Would you be open to a 15 minute call this week?\n\n{{sender_name}}"
        ),
        "variables": ["business_name", "contact_name", "sender_name"],
    },
    {
        "template_type": "email",
        "name": "Gentle follow-up",
        "subject": "Following up, {{business_name}}",
        "content": (
            "Hi {{contact_name}},\n\nJust checking in on my last note. Happy to share a few examples "
            "of what we did for similar businesses.\n\n{{sender_name}}"
        ),
        "variables": ["business_name", "contact_name", "sender_name"],
    },
    {
        "template_type": "proposal",
        "name": "Website redesign proposal",
        "subject": None,
        "content": (
            "Write a proposal offering {{business_name}} a website redesign focused on mobile "
            "bookings, local SEO and faster page loads."
        ),
        "variables": ["business_name"],
    },
]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_template(template: Template) -> Dict[str, Any]:
    return {
        "id": template.id,
        "template_type": template.template_type,
        "name": template.name,
        "subject": template.subject,
        "content": template.content,
        "variables": template.variables or [],
        "is_system": bool(template.is_system),
        "usage_count": template.usage_count or 0,
        "created_at": _iso(template.created_at),
    }


def _visible_to(user_id: str):
    return or_(Template.user_id == user_id, Template.is_system.is_(True))


async def seed_templates(db: AsyncSession, templates: List[Dict[str, Any]] = DEFAULT_TEMPLATES) -> int:
    result = await db.execute(
        select(Template.template_type, Template.name).where(Template.is_system.is_(True))
    )
    existing = {(row[0], row[1]) for row in result.all()}
    created = 0
    for template_data in templates:
        if (template_data["template_type"], template_data["name"]) in existing:
            continue
        db.add(Template(is_system=True, is_active=True, **template_data))
        created += 1
    await db.commit()
    return created


async def list_templates_service(
    *, user_id: str, db: AsyncSession, template_type: Optional[str] = None
) -> List[Dict[str, Any]]:
    filters = [_visible_to(user_id), Template.is_active.is_(True)]
    if template_type:
        filters.append(Template.template_type == template_type)
    result = await db.execute(
        select(Template)
        .where(*filters)
        .order_by(Template.is_system.desc(), Template.usage_count.desc(), Template.name.asc())
    )
    return [serialize_template(template) for template in result.scalars().all()]


async def create_template_service(*, user_id: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    template_type = str(payload.get("template_type") or "").strip()
    name = str(payload.get("name") or "").strip()
    content = str(payload.get("content") or "").strip()
    if not template_type or not name or not content:
        raise HTTPException(status_code=400, detail="Template type, name, and content are required")
    template = Template(
        user_id=user_id,
        template_type=template_type,
        name=name,
        subject=payload.get("subject"),
        content=content,
        variables=payload.get("variables"),
    )
    db.add(template)
    await db.commit()
    await db.refresh(template)
    logger.info("template_created user=%s type=%s", user_id, template_type)
    return serialize_template(template)


async def record_template_use(db: AsyncSession, user_id: str, template_name: Optional[str]) -> None:
    """Count a use of every visible template with this name. Flushes only."""
    if not template_name:
        return
    await db.execute(
        update(Template)
        .where(_visible_to(user_id), Template.name == template_name, Template.is_active.is_(True))
        .values(usage_count=Template.usage_count + 1)
    )
