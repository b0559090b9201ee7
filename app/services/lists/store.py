"""ListRecord persistence.

Status writes go through `can_transition` so a record only moves forward along
pending -> sent -> delivered -> read and lands in exactly one terminal status.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidListTransitionError, ListRecordNotFoundError
from app.models.list_record import (
    TERMINAL_LIST_STATUSES,
    ListRecord,
    ListStatus,
    can_transition,
)
from app.services.sessions.window import day_bounds, utcnow

logger = structlog.get_logger(__name__)

# Terminal status -> timestamp column stamped on entry.
_TERMINAL_STAMPS = {
    ListStatus.ACCEPTED: "accepted_at",
    ListStatus.REJECTED: "rejected_at",
    ListStatus.EXPIRED: "expired_at",
}

_TERMINAL_VALUES = [s.value for s in TERMINAL_LIST_STATUSES]


class ListStore:
    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        business_timezone: str | None = None,
    ) -> None:
        self._db = db
        self._clock = clock
        self._tz = business_timezone

    async def get(self, record_id: uuid.UUID) -> ListRecord | None:
        return await self._db.get(ListRecord, record_id)

    async def find(self, session_id: uuid.UUID, list_id: str) -> ListRecord | None:
        result = await self._db.execute(
            select(ListRecord).where(
                ListRecord.session_id == session_id,
                ListRecord.list_id == list_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_or_update(
        self,
        session_id: uuid.UUID,
        list_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> ListRecord:
        """Insert a pending record, or refresh metadata of a non-terminal one.

        A terminal record is returned untouched.
        """
        now = self._clock()
        table = ListRecord.__table__
        stmt = pg_insert(table).values(
            {
                "id": uuid.uuid4(),
                "session_id": session_id,
                "list_id": list_id,
                "status": ListStatus.PENDING.value,
                "metadata": metadata or {},
                "created_at": now,
                "updated_at": now,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["session_id", "list_id"],
            set_={"metadata": stmt.excluded["metadata"], "updated_at": now},
            where=table.c.status.notin_(_TERMINAL_VALUES),
        )
        await self._db.execute(stmt)
        await self._db.flush()

        record = await self.find(session_id, list_id)
        if record is None:
            raise ListRecordNotFoundError(
                f"List {list_id} missing after upsert for session {session_id}"
            )
        # The upsert bypassed the identity map; pick up the stored values.
        await self._db.refresh(record)
        return record

    async def mark_all_pending_accepted_for_today(self, session_id: uuid.UUID) -> int:
        """Bulk pending -> accepted for records created today in the business timezone."""
        now = self._clock()
        start, end = day_bounds(now, self._tz)
        result = await self._db.execute(
            update(ListRecord)
            .where(
                ListRecord.session_id == session_id,
                ListRecord.status == ListStatus.PENDING.value,
                ListRecord.created_at >= start,
                ListRecord.created_at < end,
            )
            .values(
                status=ListStatus.ACCEPTED.value,
                accepted_at=now,
                updated_at=now,
            )
        )
        await self._db.flush()
        return result.rowcount or 0

    async def update_status(
        self, record_id: uuid.UUID, status: ListStatus
    ) -> ListRecord:
        record = await self.get(record_id)
        if record is None:
            raise ListRecordNotFoundError(f"List record {record_id} not found")

        current = ListStatus(record.status)
        if current == status:
            return record
        if not can_transition(current, status):
            raise InvalidListTransitionError(
                f"Cannot move list record from {current.value} to {status.value}"
            )

        now = self._clock()
        record.status = status.value
        record.updated_at = now
        stamp = _TERMINAL_STAMPS.get(status)
        if stamp is not None:
            setattr(record, stamp, now)
        await self._db.flush()

        logger.info(
            "list_status_updated",
            record_id=str(record_id),
            list_id=record.list_id,
            previous=current.value,
            status=status.value,
        )
        return record

    async def list_for_session(
        self,
        session_id: uuid.UUID,
        status: ListStatus | None = None,
    ) -> list[ListRecord]:
        stmt = select(ListRecord).where(ListRecord.session_id == session_id)
        if status is not None:
            stmt = stmt.where(ListRecord.status == status.value)
        result = await self._db.execute(stmt.order_by(ListRecord.created_at.desc()))
        return list(result.scalars().all())

    async def expire_stale(self, older_than_hours: int) -> int:
        """Move non-terminal records older than the cutoff to `expired`."""
        now = self._clock()
        cutoff = now - timedelta(hours=older_than_hours)
        result = await self._db.execute(
            update(ListRecord)
            .where(
                ListRecord.status.notin_(_TERMINAL_VALUES),
                ListRecord.created_at < cutoff,
            )
            .values(status=ListStatus.EXPIRED.value, expired_at=now, updated_at=now)
        )
        await self._db.flush()
        return result.rowcount or 0

    async def delete_older_than(self, days: int) -> int:
        cutoff = self._clock() - timedelta(days=days)
        result = await self._db.execute(
            delete(ListRecord)
            .where(ListRecord.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
