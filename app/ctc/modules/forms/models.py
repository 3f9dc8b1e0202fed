from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.ctc.models import Base


class Form(Base):
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{id, label, type, required, options?, fileTypes?, maxFileSize?}]
    fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_rsvp_form: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class FormResponse(Base):
    """
    One user's submission of a form.

    `referred_by` holds the referring Technical Lead's email and is the single
    source for referral analytics.
    """

    __tablename__ = "form_responses"
    __table_args__ = (
        UniqueConstraint("form_id", "user_id", name="uq_form_responses_form_user"),
        Index("idx_form_responses_referred_by", "referred_by"),
        Index("idx_form_responses_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # [{fieldId, value}]
    shortlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    referred_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    referral_code: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Denormalized for analytics/display
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    event_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    form_title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
