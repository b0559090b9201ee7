"""Sends one list template to one recipient and tracks it for acceptance.

ListDispatchService.dispatch() does these things in order:
1. Find or create the recipient's session
2. Upsert the ListRecord (pending)
3. Send the list template
4. Record the provider message id in the list metadata
5. Move the session to waiting_response

A failed send marks the ListRecord failed and raises TransportError. A failed
record is terminal, so a redelivered job for it does not send again.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from app.core.config import settings
from app.core.exceptions import TransportError
from app.models.list_record import ListStatus
from app.services.conversation.engine import ConversationEngine
from app.services.lists.store import ListStore
from app.services.sessions.store import SessionStore
from app.services.transport.base import MessageTransport, SendStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ListSendRequest:
    company_id: uuid.UUID
    phone_number: str
    list_id: str
    template_name: str
    parameters: list[str]
    language: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ListSendRequest":
        return cls(
            company_id=uuid.UUID(str(payload["company_id"])),
            phone_number=payload["phone_number"],
            list_id=payload["list_id"],
            template_name=payload["template_name"],
            parameters=list(payload.get("parameters") or []),
            language=payload.get("language"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "company_id": str(self.company_id),
            "phone_number": self.phone_number,
            "list_id": self.list_id,
            "template_name": self.template_name,
            "parameters": self.parameters,
            "language": self.language,
        }


class ListDispatchService:
    def __init__(
        self,
        session_store: SessionStore,
        list_store: ListStore,
        transport: MessageTransport,
        engine: ConversationEngine,
    ) -> None:
        self._sessions = session_store
        self._lists = list_store
        self._transport = transport
        self._engine = engine

    async def dispatch(self, request: ListSendRequest) -> uuid.UUID:
        """Send the list and return the ListRecord id."""
        session = await self._sessions.find_or_create(request.phone_number, request.company_id)
        session_id = session.id
        language = request.language or (session.context or {}).get("language") or settings.default_language

        record = await self._lists.create_or_update(
            session_id,
            request.list_id,
            {"template_name": request.template_name, "parameters": request.parameters},
        )
        record_id = record.id
        if ListStatus(record.status).is_terminal:
            logger.info(
                "list_dispatch_skipped_terminal",
                record_id=str(record_id),
                list_id=request.list_id,
                status=record.status,
            )
            return record_id

        try:
            result = await self._transport.send_template(
                request.company_id,
                request.phone_number,
                request.template_name,
                request.parameters,
                language,
                list_id=request.list_id,
            )
        except TransportError:
            await self._lists.update_status(record_id, ListStatus.FAILED)
            raise

        if result.status is SendStatus.FAILED:
            await self._lists.update_status(record_id, ListStatus.FAILED)
            raise TransportError(f"List {request.list_id} send failed: {result.detail}")

        if result.provider_message_id:
            record.metadata_ = {
                **(record.metadata_ or {}),
                "provider_message_id": result.provider_message_id,
            }
        # The record stays pending until the customer acknowledges it.
        await self._engine.mark_as_waiting_response(request.phone_number, request.company_id)

        logger.info(
            "list_dispatched",
            record_id=str(record_id),
            list_id=request.list_id,
            phone_number=request.phone_number,
            company_id=str(request.company_id),
            provider_message_id=result.provider_message_id,
        )
        return record_id
