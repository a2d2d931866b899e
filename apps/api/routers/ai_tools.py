"""AI writing tools router."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.dependencies import ensure_user, get_credential_vault, get_credit_ledger
from routers.errors import credit_http_error
from routers.rate_limit import rate_limit
from services.ai_tools import (
    delete_document_service,
    generate_custom_service,
    generate_email_service,
    generate_proposal_service,
    get_document_service,
    list_documents_service,
    update_document_service,
)
from services.byok import CredentialVault
from services.credit_types import CreditError
from services.credits import CreditLedger
from services.providers.types import ProviderError
from services.templates import create_template_service, list_templates_service

router = APIRouter()

_ai_rate_limit = rate_limit("ai_generate", limit=60, window_seconds=3600)


class ProposalRequest(BaseModel):
    lead_id: Optional[str] = None
    business_name: str = Field(default="", max_length=255)
    business_type: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, max_length=8000)
    sender_name: Optional[str] = None
    sender_company: Optional[str] = None
    services: Optional[str] = None
    template_name: Optional[str] = Field(default=None, max_length=255)


class EmailRequest(BaseModel):
    lead_id: Optional[str] = None
    business_name: str = Field(default="", max_length=255)
    contact_name: Optional[str] = None
    email_type: str = "introduction"
    custom_prompt: Optional[str] = Field(default=None, max_length=8000)
    previous_context: Optional[str] = Field(default=None, max_length=8000)
    sender_name: Optional[str] = None
    sender_company: Optional[str] = None
    subject: Optional[str] = None
    template_name: Optional[str] = Field(default=None, max_length=255)


class CustomContentRequest(BaseModel):
    lead_id: Optional[str] = None
    prompt: str = Field(default="", max_length=8000)
    content_type: Optional[str] = None
    title: Optional[str] = None
    template_name: Optional[str] = Field(default=None, max_length=255)


class DocumentUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class TemplateRequest(BaseModel):
    template_type: str = Field(default="", max_length=32)
    name: str = Field(default="", max_length=255)
    subject: Optional[str] = Field(default=None, max_length=255)
    content: str = Field(default="", max_length=8000)
    variables: Optional[List[str]] = None


@router.post("/proposal")
async def generate_proposal(
    request: ProposalRequest,
    _rate_limit: None = Depends(_ai_rate_limit),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await generate_proposal_service(
            user_id=auth.user_id, payload=request.model_dump(), ledger=ledger, vault=vault, db=db
        )
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.post("/email")
async def generate_email(
    request: EmailRequest,
    _rate_limit: None = Depends(_ai_rate_limit),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await generate_email_service(
            user_id=auth.user_id, payload=request.model_dump(), ledger=ledger, vault=vault, db=db
        )
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.post("/custom")
async def generate_custom(
    request: CustomContentRequest,
    _rate_limit: None = Depends(_ai_rate_limit),
    auth: AuthContext = Depends(get_auth_context),
    ledger: CreditLedger = Depends(get_credit_ledger),
    vault: CredentialVault = Depends(get_credential_vault),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    try:
        return await generate_custom_service(
            user_id=auth.user_id, payload=request.model_dump(), ledger=ledger, vault=vault, db=db
        )
    except (CreditError, ProviderError) as exc:
        raise credit_http_error(exc) from exc


@router.get("/documents")
async def list_documents(
    document_type: Optional[str] = Query(default=None),
    lead_id: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_documents_service(
        user_id=auth.user_id,
        db=db,
        document_type=document_type,
        lead_id=lead_id,
        page=page,
        limit=limit,
    )


@router.get("/documents/{document_id}")
async def get_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_document_service(user_id=auth.user_id, document_id=document_id, db=db)


@router.put("/documents/{document_id}")
async def update_document(
    document_id: str,
    request: DocumentUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await update_document_service(
        user_id=auth.user_id, document_id=document_id, payload=request.model_dump(), db=db
    )


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await delete_document_service(user_id=auth.user_id, document_id=document_id, db=db)
    return {"ok": True}


@router.get("/templates")
async def list_templates(
    template_type: Optional[str] = Query(default=None, max_length=32),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"items": await list_templates_service(user_id=auth.user_id, db=db, template_type=template_type)}


@router.post("/templates", status_code=201)
async def create_template(
    request: TemplateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth.user_id)
    return await create_template_service(user_id=auth.user_id, payload=request.model_dump(), db=db)
