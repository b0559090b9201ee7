"""Per (company, phone number) conversation session ORM model."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.postgres import Base


class SessionState(str, Enum):
    WELCOME = "welcome"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WAITING_RESPONSE = "waiting_response"

    @classmethod
    def parse(cls, raw: str | None) -> "SessionState | None":
        """Return the matching state, or None for a value outside the enum."""
        try:
            return cls(raw)
        except ValueError:
            return None


class PhoneSession(Base):
    __tablename__ = "phone_sessions"
    __table_args__ = (
        # One active row per (company, phone). Backs find_or_create's upsert.
        Index(
            "uq_phone_sessions_active_company_phone",
            "company_id",
            "phone_number",
            unique=True,
            postgresql_where=text("active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # Stored as text, not a DB enum, so a corrupt value can be read back and reset.
    state: Mapped[str] = mapped_column(
        Text, nullable=False, default=SessionState.WELCOME.value
    )
    context: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=dict, server_default="{}"
    )
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    session_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    session_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
