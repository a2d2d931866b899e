"""SeoReport model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func
import uuid

from database import Base


class SeoReport(Base):
    __tablename__ = "seo_reports"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    website_url = Column(String, nullable=False)
    overall_score = Column(Integer, nullable=False)
    analysis_json = Column(JSON, nullable=False)
    email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
