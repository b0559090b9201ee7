"""PhoneSession persistence.

The store is the only writer of phone_sessions rows. Every deadline write
goes through GREATEST(existing, now + window) in SQL so concurrent writers
(inbound webhooks and the renewal sweep) can never move a deadline backwards.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import Select, delete, exists, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.company import Company
from app.models.list_record import ListRecord
from app.models.phone_session import PhoneSession, SessionState
from app.services.sessions.window import utcnow, window_length

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RenewalCandidate:
    """A session eligible for a renewal prompt, with its owning company."""

    session: PhoneSession
    company: Company


def renewal_candidates_query(upper: datetime, lower: datetime) -> Select:
    """Sessions expiring by `upper` that did not lapse before `lower`.

    Only active sessions past the welcome step, owned by an active company.
    """
    return (
        select(PhoneSession, Company)
        .join(Company, Company.id == PhoneSession.company_id)
        .where(
            PhoneSession.active.is_(True),
            PhoneSession.state != SessionState.WELCOME.value,
            PhoneSession.session_expires_at <= upper,
            PhoneSession.session_expires_at > lower,
            Company.is_active.is_(True),
        )
        .order_by(PhoneSession.session_expires_at.asc())
    )


class SessionStore:
    """Find-or-create, step transitions and window bookkeeping for PhoneSession."""

    def __init__(
        self,
        db: AsyncSession,
        window: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._window = window or window_length()
        self._clock = clock

    async def find_active(
        self, phone_number: str, company_id: uuid.UUID
    ) -> PhoneSession | None:
        result = await self._db.execute(
            select(PhoneSession).where(
                PhoneSession.phone_number == phone_number,
                PhoneSession.company_id == company_id,
                PhoneSession.active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get(self, session_id: uuid.UUID) -> PhoneSession | None:
        return await self._db.get(PhoneSession, session_id)

    async def find_or_create(
        self, phone_number: str, company_id: uuid.UUID
    ) -> PhoneSession:
        """Return the active session for (company, phone), creating it in `welcome`.

        INSERT ... ON CONFLICT DO NOTHING against the partial unique index
        makes concurrent first messages converge on a single row.
        """
        now = self._clock()
        stmt = (
            pg_insert(PhoneSession)
            .values(
                id=uuid.uuid4(),
                company_id=company_id,
                phone_number=phone_number,
                state=SessionState.WELCOME.value,
                context={},
                last_message_at=now,
                active=True,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["company_id", "phone_number"],
                index_where=text("active"),
            )
        )
        result = await self._db.execute(stmt)
        if result.rowcount:
            logger.info(
                "phone_session_created",
                phone_number=phone_number,
                company_id=str(company_id),
            )

        session = await self.find_active(phone_number, company_id)
        if session is None:
            # Only reachable if the row was deactivated between insert and read.
            raise RuntimeError(
                f"Active session for {phone_number} vanished during find_or_create"
            )
        return session

    async def update_step(
        self,
        session_id: uuid.UUID,
        new_state: SessionState,
        context: dict[str, Any] | None = None,
    ) -> None:
        values: dict[str, Any] = {"state": new_state.value}
        if context is not None:
            values["context"] = context
        await self._db.execute(
            update(PhoneSession).where(PhoneSession.id == session_id).values(**values)
        )
        await self._db.flush()

    async def update_context(
        self, session_id: uuid.UUID, context: dict[str, Any]
    ) -> None:
        await self._db.execute(
            update(PhoneSession)
            .where(PhoneSession.id == session_id)
            .values(context=context)
        )
        await self._db.flush()

    def _extended_deadline(self, now: datetime) -> Any:
        candidate = now + self._window
        return func.greatest(
            func.coalesce(PhoneSession.session_expires_at, candidate),
            candidate,
        )

    async def update_expiry(self, session_id: uuid.UUID, inbound: bool = False) -> None:
        """Extend the deadline to now + window; never shrinks it.

        Only an inbound customer message stamps last_message_at, which
        find_by_phone orders by.
        """
        now = self._clock()
        values: dict[str, Any] = {"session_expires_at": self._extended_deadline(now)}
        if inbound:
            values["last_message_at"] = now
        await self._db.execute(
            update(PhoneSession).where(PhoneSession.id == session_id).values(**values)
        )
        await self._db.flush()

    async def start_session(self, session_id: uuid.UUID) -> None:
        """Open a fresh window: stamp the start and extend the deadline."""
        now = self._clock()
        await self._db.execute(
            update(PhoneSession)
            .where(PhoneSession.id == session_id)
            .values(
                session_started_at=now,
                session_expires_at=self._extended_deadline(now),
            )
        )
        await self._db.flush()

    async def is_expiring_soon(
        self,
        phone_number: str,
        company_id: uuid.UUID,
        hours_threshold: int = 4,
    ) -> bool:
        """True when the window closes within `hours_threshold` hours.

        A missing session or a session without a deadline counts as expired.
        """
        session = await self.find_active(phone_number, company_id)
        if session is None or session.session_expires_at is None:
            return True
        threshold = self._clock() + timedelta(hours=hours_threshold)
        return session.session_expires_at < threshold

    async def find_by_phone(self, phone_number: str) -> PhoneSession | None:
        """Most recently active session for a phone number across all companies."""
        result = await self._db.execute(
            select(PhoneSession)
            .where(
                PhoneSession.phone_number == phone_number,
                PhoneSession.active.is_(True),
            )
            .order_by(PhoneSession.last_message_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_renewal_candidates(
        self, upper: datetime, lower: datetime
    ) -> list[RenewalCandidate]:
        result = await self._db.execute(renewal_candidates_query(upper, lower))
        return [RenewalCandidate(session=s, company=c) for s, c in result.all()]

    async def deactivate(self, session_id: uuid.UUID) -> None:
        await self._db.execute(
            update(PhoneSession)
            .where(PhoneSession.id == session_id)
            .values(active=False)
        )
        await self._db.flush()

    async def delete_inactive_older_than(self, days: int) -> int:
        """Retention: hard-delete closed sessions idle for more than `days`.

        Sessions that still own list records are kept until those age out.
        """
        cutoff = self._clock() - timedelta(days=days)
        result = await self._db.execute(
            delete(PhoneSession).where(
                PhoneSession.active.is_(False),
                PhoneSession.last_message_at < cutoff,
                ~exists().where(ListRecord.session_id == PhoneSession.id),
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
