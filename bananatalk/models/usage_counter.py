"""Usage counter model for windowed quota accounting."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, ForeignKey, UniqueConstraint, CheckConstraint, func
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column
from bananatalk.database import Base


class UsageCounter(Base):
    """One windowed counter per (user, action class).

    ``anchor`` is the start of the window the count belongs to; a counter
    whose anchor precedes the current window reads as zero.
    """

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("user_id", "action_class", name="uq_usage_counters_user_class"),
        CheckConstraint("count >= 0", name="ck_usage_counters_count_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    action_class: Mapped[str] = mapped_column(String(40))
    count: Mapped[int] = mapped_column(Integer, server_default="0")
    anchor: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return (
            f"<UsageCounter(user_id='{self.user_id}', class='{self.action_class}', "
            f"count={self.count}, anchor='{self.anchor}')>"
        )
