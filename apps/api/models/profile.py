"""Profile model: identity, role and materialized credit balance."""

from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Profile(Base):
    """Platform user profile."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_profiles_credits_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=True, index=True)
    username = Column(String, unique=True, nullable=True, index=True)
    country = Column(String, nullable=True)
    role = Column(String, nullable=False, default="free", index=True)
    credits = Column(Integer, nullable=False, default=0)
    credit_multiplier = Column(Float, nullable=False, default=1.0)
    campaign_limit = Column(Integer, nullable=True, default=3)
    subscription_plan = Column(String, nullable=True)
    subscription_reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    campaigns = relationship("Campaign", back_populates="owner")
    visits = relationship("Visit", back_populates="visitor")
    credit_transactions = relationship("CreditTransaction", back_populates="user")
