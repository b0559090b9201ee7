"""Scheduled renewal of customer sessions whose window is about to close.

ExpirySweeper.sweep() does these things in order:
1. Compute the bounds: upper = now + 4h, lower = now - 2 days
2. Load active, non-welcome sessions of active companies expiring in (lower, upper]
3. Keep the first session per phone number; count the rest as duplicates
4. Send the renewal template per phone and tally success / skipped / error

Each recipient runs inside its own scope (a savepoint plus commit in
production), so one recipient's failure, database errors included, never
aborts the sweep or undoes renewals already sent.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

import structlog

from app.core.config import settings
from app.models.company import Company
from app.services.sessions.store import RenewalCandidate, SessionStore
from app.services.sessions.window import sweep_bounds, utcnow
from app.services.transport.base import MessageTransport, SendStatus, TemplateSendResult

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    candidates: int = 0
    success: int = 0
    skipped: int = 0
    errors: int = 0
    duplicates: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ExpirySweeper:
    def __init__(
        self,
        session_store: SessionStore,
        transport: MessageTransport,
        template_name: str | None = None,
        default_language: str | None = None,
        upper_hours: int | None = None,
        lower_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
        recipient_scope: Callable[[], AbstractAsyncContextManager[Any]] = nullcontext,
    ) -> None:
        self._sessions = session_store
        self._transport = transport
        self._template_name = template_name or settings.renewal_template_name
        self._default_language = default_language or settings.default_language
        self._upper_hours = upper_hours if upper_hours is not None else settings.expiry_sweep_upper_hours
        self._lower_days = lower_days if lower_days is not None else settings.expiry_sweep_lower_days
        self._clock = clock
        self._recipient_scope = recipient_scope

    async def sweep(self) -> SweepReport:
        """Run one sweep. Query failures propagate; per-recipient failures do not."""
        now = self._clock()
        upper, lower = sweep_bounds(now, self._upper_hours, self._lower_days)
        candidates = await self._sessions.find_renewal_candidates(upper, lower)

        report = SweepReport(candidates=len(candidates))
        seen: set[str] = set()

        for candidate in candidates:
            phone_number = candidate.session.phone_number
            if phone_number in seen:
                report.duplicates += 1
                continue
            seen.add(phone_number)
            await self._renew(candidate, report)

        logger.info(
            "expiry_sweep_completed",
            upper=upper.isoformat(),
            lower=lower.isoformat(),
            **report.to_dict(),
        )
        return report

    async def _renew(self, candidate: RenewalCandidate, report: SweepReport) -> None:
        session = candidate.session
        company = candidate.company
        session_id = session.id
        phone_number = session.phone_number
        context = dict(session.context or {})
        language = context.get("language") or company.setting(
            "language", self._default_language
        )

        try:
            async with self._recipient_scope():
                result = await self._send_renewal(session_id, phone_number, company, language)
        except Exception as e:
            report.errors += 1
            logger.error(
                "renewal_failed",
                session_id=str(session_id),
                phone_number=phone_number,
                company_id=str(company.id),
                error=str(e),
            )
            return

        if result.status is SendStatus.SKIPPED:
            report.skipped += 1
            logger.info(
                "renewal_skipped",
                session_id=str(session_id),
                phone_number=phone_number,
                detail=result.detail,
            )
            return

        if result.status is SendStatus.FAILED:
            report.errors += 1
            logger.error(
                "renewal_send_failed",
                session_id=str(session_id),
                phone_number=phone_number,
                company_id=str(company.id),
                error=result.detail,
            )
            return

        report.success += 1
        logger.info(
            "renewal_sent",
            session_id=str(session_id),
            phone_number=phone_number,
            provider_message_id=result.provider_message_id,
        )

    async def _send_renewal(
        self,
        session_id: uuid.UUID,
        phone_number: str,
        company: Company,
        language: str,
    ) -> TemplateSendResult:
        """Send the template and, when it went out, extend the window and reset context."""
        result = await self._transport.send_template(
            company.id,
            phone_number,
            self._template_name,
            [company.name],
            language,
        )
        if result.status is SendStatus.SUCCESS:
            await self._sessions.update_expiry(session_id)
            await self._sessions.update_context(
                session_id,
                {
                    "renewal_template": self._template_name,
                    "parameters": [company.name],
                    "language": language,
                    "renewed_at": self._clock().isoformat(),
                },
            )
        return result

    async def run(self) -> SweepReport | None:
        """Scheduled entry point. Never raises."""
        try:
            return await self.sweep()
        except Exception as e:
            logger.error("expiry_sweep_failed", error=str(e))
            return None

    async def trigger(self) -> dict[str, Any]:
        """Manual run returning a status envelope."""
        try:
            report = await self.sweep()
        except Exception as e:
            logger.error("expiry_sweep_trigger_failed", error=str(e))
            return {"status": "error", "message": str(e), "report": None}
        return {
            "status": "success",
            "message": "Expiry sweep completed",
            "report": report.to_dict(),
        }
