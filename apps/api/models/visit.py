"""Visit model."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Visit(Base):
    """One visitor attempt against one campaign."""

    __tablename__ = "visits"
    __table_args__ = (
        # One row per attempt ordinal; concurrent submissions for the same slot collide here.
        UniqueConstraint("visitor_id", "campaign_id", "attempt_number", name="uq_visits_visitor_campaign_attempt"),
        CheckConstraint("attempt_number >= 1", name="ck_visits_attempt_positive"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    visitor_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    campaign_id = Column(String, ForeignKey("campaigns.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    is_valid = Column(Boolean, nullable=False, default=True)
    credits_earned = Column(Integer, nullable=False, default=0)
    visit_duration = Column(Float, nullable=False, default=0.0)
    fraud_score = Column(Float, nullable=False, default=0.0)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    visitor = relationship("Profile", back_populates="visits")
    campaign = relationship("Campaign", back_populates="visits")
