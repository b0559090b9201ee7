"""Turns Meta webhook payloads into conversation and delivery-status updates.

A payload is split into one event per inbound message and one per status
callback so each can be queued and retried on its own. Validation and
not-found errors are logged and dropped; anything else propagates so the
queue worker retries the event.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import (
    CompanyInactiveError,
    CompanyNotFoundError,
    SessionNotFoundError,
)
from app.models.outbound_message import MessageStatus
from app.schemas.webhook import InboundMessage, MessageStatusEvent, WebhookPayload
from app.services.companies import CompanyLookup
from app.services.conversation.engine import ConversationEngine, InboundOutcome
from app.services.messages import OutboundMessageStore
from app.services.queue import JOB_INBOUND_MESSAGE, JOB_STATUS_UPDATE
from app.services.sessions.store import SessionStore

logger = structlog.get_logger(__name__)

_DROPPED_ERRORS = (CompanyNotFoundError, CompanyInactiveError, SessionNotFoundError)


def extract_events(payload: dict[str, Any]) -> list[tuple[str, dict[str, Any]]]:
    """Split a webhook payload into (job_type, event) pairs.

    Raises pydantic.ValidationError when the envelope itself is malformed.
    """
    parsed = WebhookPayload.model_validate(payload)
    events: list[tuple[str, dict[str, Any]]] = []
    for entry in parsed.entry:
        for change in entry.changes:
            phone_number_id = change.value.metadata.phone_number_id if change.value.metadata else None
            for message in change.value.messages:
                events.append(
                    (JOB_INBOUND_MESSAGE, {"message": message, "phone_number_id": phone_number_id})
                )
            for status in change.value.statuses:
                events.append((JOB_STATUS_UPDATE, {"status": status}))
    return events


def _parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class WebhookProcessor:
    def __init__(
        self,
        engine: ConversationEngine,
        session_store: SessionStore,
        company_lookup: CompanyLookup,
        message_store: OutboundMessageStore,
        default_company_name: str | None = None,
    ) -> None:
        self._engine = engine
        self._sessions = session_store
        self._companies = company_lookup
        self._messages = message_store
        self._default_company_name = default_company_name or settings.default_company_name

    async def process_payload(self, payload: dict[str, Any]) -> int:
        """Handle every event of a payload inline. Returns the event count."""
        events = extract_events(payload)
        for job_type, event in events:
            if job_type == JOB_INBOUND_MESSAGE:
                await self.handle_inbound(event)
            else:
                await self.handle_status(event)
        return len(events)

    async def _resolve_company_id(self, phone_number: str) -> uuid.UUID | None:
        """Company of the phone's latest session, else the default company."""
        session = await self._sessions.find_by_phone(phone_number)
        if session is not None:
            return session.company_id
        company = await self._companies.get_by_name(self._default_company_name)
        if company is None:
            return None
        logger.info(
            "inbound_default_company",
            phone_number=phone_number,
            company=self._default_company_name,
        )
        return company.id

    async def handle_inbound(self, event: dict[str, Any]) -> InboundOutcome | None:
        try:
            message = InboundMessage.model_validate(event.get("message") or {})
        except ValidationError as e:
            logger.warning("inbound_message_invalid", error=str(e))
            return None

        phone_number = message.from_
        is_reaction = message.type == "reaction"
        text = ""
        if message.type == "text" and message.text is not None:
            text = message.text.body

        company_id = await self._resolve_company_id(phone_number)
        if company_id is None:
            logger.warning(
                "inbound_company_unresolved",
                phone_number=phone_number,
                message_id=message.id,
            )
            return None

        try:
            outcome = await self._engine.handle_inbound_message(
                phone_number, company_id, text, is_reaction=is_reaction
            )
        except _DROPPED_ERRORS as e:
            logger.warning(
                "inbound_message_dropped",
                phone_number=phone_number,
                message_id=message.id,
                error=e.message,
            )
            return None

        logger.info(
            "inbound_message_processed",
            phone_number=phone_number,
            message_id=message.id,
            message_type=message.type,
            action=outcome.action.value,
        )
        return outcome

    async def handle_status(self, event: dict[str, Any]) -> bool:
        try:
            status_event = MessageStatusEvent.model_validate(event.get("status") or {})
        except ValidationError as e:
            logger.warning("status_event_invalid", error=str(e))
            return False

        try:
            status = MessageStatus(status_event.status)
        except ValueError:
            logger.warning(
                "status_event_unknown",
                provider_message_id=status_event.id,
                status=status_event.status,
            )
            return False

        error = status_event.first_error()
        return await self._messages.apply_status(
            status_event.id,
            status,
            occurred_at=_parse_timestamp(status_event.timestamp),
            pricing=status_event.pricing,
            error_code=str(error.code) if error is not None and error.code is not None else None,
            error_message=error.message if error is not None else None,
        )
