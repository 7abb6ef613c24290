"""User model carrying tier, subscription and engagement fields."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, TIMESTAMP, func
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from bananatalk.database import Base


class User(Base):
    """Account record as seen by the quota and job subsystems."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Profile
    email: Mapped[str | None] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255))

    # Tier (visitor / regular / vip); read through tiers.resolve_tier
    tier: Mapped[str] = mapped_column(String(20), server_default="regular")
    vip_expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), index=True)

    # Engagement
    last_activity_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), index=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, server_default="true")
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, server_default="false")
    email_notifications: Mapped[bool] = mapped_column(Boolean, server_default="true")
    inactivity_emails_sent: Mapped[list | None] = mapped_column(JSONB, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<User(id='{self.id}', tier='{self.tier}')>"
