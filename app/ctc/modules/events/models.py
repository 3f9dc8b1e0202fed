from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ctc.models import Base

if TYPE_CHECKING:
    from app.ctc.modules.communities.models import Community


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_community_id", "community_id"),
        Index("idx_events_date", "date"),
        Index("idx_events_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    community_id: Mapped[int] = mapped_column(ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    creator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ISO dates (YYYY-MM-DD) compare correctly as strings.
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    end_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_multi_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    time: Mapped[str | None] = mapped_column(String(16), nullable=True)  # HH:MM

    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False, default="offline")
    max_capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    interested: Mapped[list | None] = mapped_column(JSON, nullable=True)  # user ids

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    community: Mapped["Community"] = relationship(lazy="joined")


class EventRegistration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_registrations_event_user"),
        Index("idx_event_registrations_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Snapshot at registration time
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    registration_type: Mapped[str] = mapped_column(String(16), nullable=False, default="direct")  # direct, form
    form_response_id: Mapped[int | None] = mapped_column(
        ForeignKey("form_responses.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
