"""AI writing tools: proposals, outreach emails and free-form content."""

from __future__ import annotations

from datetime import datetime
import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.ai_document import AIDocument
from models.saved_lead import SavedLead
from services.actions import run_billable_action
from services.byok import CredentialVault
from services.campaigns import get_user_lead
from services.credits import CreditLedger
from services.providers.generation import generate_text
from services.templates import record_template_use

logger = logging.getLogger(__name__)

GENERATION_PROVIDER = "generation"
EMAIL_TYPES = ("introduction", "follow_up", "meeting_request", "custom")

PROPOSAL_SYSTEM_PROMPT = (
    "You are a professional business proposal writer. Create compelling, personalized business "
    "proposals that help close deals. Focus on value proposition and benefits for the client."
)
EMAIL_SYSTEM_PROMPT = (
    "You are an expert email copywriter. Write professional, engaging emails that get responses. "
    "Keep emails concise and actionable. Always include a clear subject line at the start."
)
CUSTOM_SYSTEM_PROMPT = (
    "You are a helpful AI assistant specialized in business communication and content creation."
)

_SUBJECT_RE = re.compile(r"Subject:\s*(.+?)(?:\n|$)", re.IGNORECASE)


def email_action_type(email_type: Optional[str]) -> str:
    return "ai_follow_up" if email_type == "follow_up" else "ai_email"


def build_proposal_prompt(payload: Dict[str, Any]) -> str:
    if payload.get("custom_prompt"):
        return str(payload["custom_prompt"])
    sender_lines = [
        f"Proposal from: {payload['sender_name']}" if payload.get("sender_name") else "",
        f"Company: {payload['sender_company']}" if payload.get("sender_company") else "",
        f"Services to offer: {payload['services']}" if payload.get("services") else "",
    ]
    return (
        "Create a professional business proposal for the following business:\n\n"
        f"Business Name: {payload['business_name']}\n"
        f"Business Type: {payload.get('business_type') or 'Not specified'}\n"
        f"Location: {payload.get('address') or 'Not specified'}\n"
        f"Website: {payload.get('website') or 'Not specified'}\n\n"
        + "\n".join(line for line in sender_lines if line)
        + "\n\nPlease create a professional proposal with the following sections:\n"
        "1. Executive Summary\n"
        "2. Understanding of Their Business\n"
        "3. Proposed Solutions\n"
        "4. Benefits & Value Proposition\n"
        "5. Pricing Options (leave placeholders)\n"
        "6. Next Steps\n"
        "7. Call to Action\n\n"
        "Make it personalized and compelling."
    )


def build_email_prompt(payload: Dict[str, Any]) -> str:
    business = payload["business_name"]
    contact = f" (Contact: {payload['contact_name']})" if payload.get("contact_name") else ""
    email_type = payload.get("email_type") or "introduction"
    if email_type == "introduction":
        return (
            f"Write a professional introduction email to {business}{contact}.\n"
            "The email should:\n"
            f"- Introduce {payload.get('sender_name') or 'myself'} and {payload.get('sender_company') or 'our company'}\n"
            "- Express interest in potential collaboration\n"
            "- Be concise and professional\n"
            "- Include a clear call to action"
        )
    if email_type == "follow_up":
        context = f"Previous context: {payload['previous_context']}\n" if payload.get("previous_context") else ""
        return (
            f"Write a professional follow-up email to {business}{contact}.\n"
            f"{context}"
            "The email should:\n"
            "- Reference previous communication\n"
            "- Gently remind of pending items\n"
            "- Be polite and professional\n"
            "- Include a call to action"
        )
    if email_type == "meeting_request":
        return (
            f"Write a professional meeting request email to {business}{contact}.\n"
            "The email should:\n"
            "- Clearly state the purpose of the meeting\n"
            "- Suggest a few time options\n"
            "- Be respectful of their time\n"
            "- Include a clear call to action"
        )
    return str(payload.get("custom_prompt") or f"Write a professional email to {business}")


def split_subject(content: str, fallback: str) -> tuple:
    """Pull a leading 'Subject:' line out of generated email text."""
    match = _SUBJECT_RE.search(content)
    if not match:
        return fallback, content
    subject = match.group(1).strip()
    body = _SUBJECT_RE.sub("", content, count=1).strip()
    return subject, body


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_document(document: AIDocument, lead_business_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": document.id,
        "lead_id": document.lead_id,
        "lead_business_name": lead_business_name,
        "document_type": document.document_type,
        "title": document.title,
        "content": document.content,
        "prompt_used": document.prompt_used,
        "lead_context": document.lead_context,
        "template_name": document.template_name,
        "credits_used": document.credits_used,
        "created_at": _iso(document.created_at),
        "updated_at": _iso(document.updated_at),
    }


async def _generate_and_save(
    *,
    ledger: CreditLedger,
    vault: CredentialVault,
    db: AsyncSession,
    user_id: str,
    action_type: str,
    messages: List[Dict[str, str]],
    document_type: str,
    title_for: Any,
    lead_id: Optional[str],
    prompt_used: str,
    lead_context: Optional[Dict[str, Any]],
    template_name: Optional[str] = None,
) -> Dict[str, Any]:
    lead_business_name = None
    if lead_id:
        lead = await get_user_lead(db, user_id, lead_id)
        lead_business_name = lead.business_name
        await db.commit()

    async def _call(api_key: str):
        return await generate_text(api_key, messages)

    async def _save(result, charge) -> AIDocument:
        title, content = title_for(result.content)
        document = AIDocument(
            user_id=user_id,
            lead_id=lead_id,
            document_type=document_type,
            title=title,
            content=content,
            prompt_used=prompt_used,
            lead_context=lead_context,
            template_name=template_name,
            credits_used=charge.credits_deducted,
        )
        db.add(document)
        await record_template_use(db, user_id, template_name)
        await db.commit()
        await db.refresh(document)
        return document

    outcome = await run_billable_action(
        ledger=ledger,
        vault=vault,
        user_id=user_id,
        action_type=action_type,
        provider=GENERATION_PROVIDER,
        call=_call,
        deliver=_save,
        reference_id=lead_id,
        metadata={"document_type": document_type},
    )
    logger.info("ai_document_created user=%s type=%s action=%s", user_id, document_type, action_type)
    return {"document": serialize_document(outcome.value, lead_business_name), **outcome.credits_payload()}


async def generate_proposal_service(
    *, user_id: str, payload: Dict[str, Any], ledger: CreditLedger, vault: CredentialVault, db: AsyncSession
) -> Dict[str, Any]:
    business_name = str(payload.get("business_name") or "").strip()
    if not business_name:
        raise HTTPException(status_code=400, detail="Business name is required")
    prompt = build_proposal_prompt(payload)
    return await _generate_and_save(
        ledger=ledger,
        vault=vault,
        db=db,
        user_id=user_id,
        action_type="ai_proposal",
        messages=[
            {"role": "system", "content": PROPOSAL_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        document_type="proposal",
        title_for=lambda content: (f"Business Proposal - {business_name}", content),
        lead_id=payload.get("lead_id"),
        template_name=payload.get("template_name"),
        prompt_used=prompt,
        lead_context={
            key: payload.get(key)
            for key in ("business_name", "business_type", "address", "website", "services")
        },
    )


async def generate_email_service(
    *, user_id: str, payload: Dict[str, Any], ledger: CreditLedger, vault: CredentialVault, db: AsyncSession
) -> Dict[str, Any]:
    business_name = str(payload.get("business_name") or "").strip()
    if not business_name:
        raise HTTPException(status_code=400, detail="Business name is required")
    email_type = payload.get("email_type") or "introduction"
    if email_type not in EMAIL_TYPES:
        raise HTTPException(status_code=400, detail=f"email_type must be one of {', '.join(EMAIL_TYPES)}")
    prompt = build_email_prompt(payload)
    supplied_subject = payload.get("subject")

    def _title(content: str):
        if supplied_subject:
            return supplied_subject, content
        return split_subject(content, f"Email to {business_name}")

    response = await _generate_and_save(
        ledger=ledger,
        vault=vault,
        db=db,
        user_id=user_id,
        action_type=email_action_type(email_type),
        messages=[
            {"role": "system", "content": EMAIL_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        document_type="email",
        title_for=_title,
        lead_id=payload.get("lead_id"),
        template_name=payload.get("template_name"),
        prompt_used=prompt,
        lead_context={
            "business_name": business_name,
            "contact_name": payload.get("contact_name"),
            "email_type": email_type,
        },
    )
    response["subject"] = response["document"]["title"]
    return response


async def generate_custom_service(
    *, user_id: str, payload: Dict[str, Any], ledger: CreditLedger, vault: CredentialVault, db: AsyncSession
) -> Dict[str, Any]:
    prompt = str(payload.get("prompt") or "").strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required")
    title = payload.get("title") or "AI Generated Content"
    return await _generate_and_save(
        ledger=ledger,
        vault=vault,
        db=db,
        user_id=user_id,
        action_type="ai_custom",
        messages=[
            {"role": "system", "content": CUSTOM_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        document_type=payload.get("content_type") or "custom",
        title_for=lambda content: (title, content),
        lead_id=payload.get("lead_id"),
        template_name=payload.get("template_name"),
        prompt_used=prompt,
        lead_context=None,
    )


async def list_documents_service(
    *,
    user_id: str,
    db: AsyncSession,
    document_type: Optional[str] = None,
    lead_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)
    filters = [AIDocument.user_id == user_id]
    if document_type:
        filters.append(AIDocument.document_type == document_type)
    if lead_id:
        filters.append(AIDocument.lead_id == lead_id)

    total_result = await db.execute(select(func.count(AIDocument.id)).where(*filters))
    total = int(total_result.scalar() or 0)
    result = await db.execute(
        select(AIDocument, SavedLead.business_name)
        .outerjoin(SavedLead, and_(AIDocument.lead_id == SavedLead.id, SavedLead.user_id == AIDocument.user_id))
        .where(*filters)
        .order_by(AIDocument.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "items": [serialize_document(document, name) for document, name in result.all()],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


async def _get_document(db: AsyncSession, user_id: str, document_id: str) -> AIDocument:
    result = await db.execute(
        select(AIDocument).where(AIDocument.id == document_id, AIDocument.user_id == user_id)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


async def get_document_service(*, user_id: str, document_id: str, db: AsyncSession) -> Dict[str, Any]:
    document = await _get_document(db, user_id, document_id)
    return serialize_document(document)


async def update_document_service(
    *, user_id: str, document_id: str, payload: Dict[str, Any], db: AsyncSession
) -> Dict[str, Any]:
    document = await _get_document(db, user_id, document_id)
    if payload.get("title") is not None:
        document.title = payload["title"]
    if payload.get("content") is not None:
        document.content = payload["content"]
    await db.commit()
    await db.refresh(document)
    return serialize_document(document)


async def delete_document_service(*, user_id: str, document_id: str, db: AsyncSession) -> None:
    document = await _get_document(db, user_id, document_id)
    await db.delete(document)
    await db.commit()
