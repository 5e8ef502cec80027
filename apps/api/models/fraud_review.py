"""FraudReview model for admin dispositions of fraud findings."""

import uuid

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from database import Base


class FraudReview(Base):
    """Admin disposition keyed by the stable finding id."""

    __tablename__ = "fraud_reviews"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    finding_id = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="reviewed")
    reviewer_id = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
