"""Campaign model: a user-owned traffic request with a credit budget."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


CAMPAIGN_STATUSES = ("active", "paused", "completed", "deleted")
DEVICE_TARGETS = ("desktop", "tablet", "mobile")


class Campaign(Base):
    """Campaign owned by exactly one profile; soft-deleted, never hard-deleted."""

    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("credits_spent >= 0", name="ck_campaigns_spent_non_negative"),
        CheckConstraint("credits_spent <= credits_allocated", name="ck_campaigns_spent_within_allocation"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    url = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    country_target = Column(String, nullable=True)
    device_target = Column(String, nullable=True)
    credits_allocated = Column(Integer, nullable=False, default=0)
    credits_spent = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("Profile", back_populates="campaigns")
    visits = relationship("Visit", back_populates="campaign")

    @property
    def remaining_credits(self) -> int:
        return int(self.credits_allocated or 0) - int(self.credits_spent or 0)
