"""AIDocument model for generated outreach content."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class AIDocument(Base):
    __tablename__ = "ai_documents"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    lead_id = Column(String, ForeignKey("saved_leads.id"), nullable=True, index=True)
    document_type = Column(String, nullable=False)  # proposal, email, custom
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    prompt_used = Column(Text, nullable=True)
    lead_context = Column(JSON, nullable=True)
    template_name = Column(String, nullable=True)
    credits_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
