"""List acceptance record ORM model."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.postgres import Base


class ListStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ACCEPTED = "accepted"
    FAILED = "failed"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_LIST_STATUSES


TERMINAL_LIST_STATUSES = frozenset(
    {ListStatus.ACCEPTED, ListStatus.FAILED, ListStatus.REJECTED, ListStatus.EXPIRED}
)

# Non-terminal progress order; a record may only move forward along it.
PROGRESS_ORDER = (ListStatus.PENDING, ListStatus.SENT, ListStatus.DELIVERED, ListStatus.READ)


def can_transition(current: ListStatus, target: ListStatus) -> bool:
    """Whether a list record may move from `current` to `target`."""
    if current.is_terminal:
        return False
    if target.is_terminal:
        return True
    return PROGRESS_ORDER.index(target) > PROGRESS_ORDER.index(current)


class ListRecord(Base):
    __tablename__ = "list_records"
    __table_args__ = (
        UniqueConstraint("session_id", "list_id", name="uq_list_records_session_list"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Back-reference id only; the session owns its lists.
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("phone_sessions.id"), nullable=False, index=True
    )
    list_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=ListStatus.PENDING.value, index=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
