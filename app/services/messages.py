"""Outbound message delivery records.

One row per send attempt. The provider's status callbacks only move a row
forward: pending -> sent -> delivered -> read, or into failed from any
status short of read.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.outbound_message import MessageStatus, OutboundMessage
from app.services.sessions.window import utcnow

logger = structlog.get_logger(__name__)

_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

_STAMPS = {
    MessageStatus.SENT: "sent_at",
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.READ: "read_at",
    MessageStatus.FAILED: "failed_at",
}

# Pricing recorded for a message the provider never delivered.
ZERO_COST_PRICING = {"billable": 0, "pricing_model": "failed", "category": "failed"}


def status_advances(current: MessageStatus, target: MessageStatus) -> bool:
    if current is MessageStatus.FAILED or current is MessageStatus.READ:
        return False
    if target is MessageStatus.FAILED:
        return True
    return _RANK[target] > _RANK[current]


class OutboundMessageStore:
    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._clock = clock

    async def create(
        self,
        company_id: uuid.UUID,
        to_phone_number: str,
        kind: str,
        *,
        template_name: str | None = None,
        parameters: list[str] | None = None,
        body: str | None = None,
        list_id: str | None = None,
    ) -> OutboundMessage:
        message = OutboundMessage(
            id=uuid.uuid4(),
            company_id=company_id,
            to_phone_number=to_phone_number,
            kind=kind,
            template_name=template_name,
            parameters=parameters,
            body=body,
            list_id=list_id,
            status=MessageStatus.PENDING.value,
            created_at=self._clock(),
        )
        self._db.add(message)
        await self._db.flush()
        return message

    async def mark_sent(self, message: OutboundMessage, provider_message_id: str | None) -> None:
        message.provider_message_id = provider_message_id
        message.status = MessageStatus.SENT.value
        message.sent_at = self._clock()
        await self._db.flush()

    async def mark_failed(
        self,
        message: OutboundMessage,
        error_code: str | None,
        error_message: str | None,
    ) -> None:
        message.status = MessageStatus.FAILED.value
        message.error_code = error_code
        message.error_message = error_message
        message.failed_at = self._clock()
        message.pricing = dict(ZERO_COST_PRICING)
        await self._db.flush()

    async def find_by_provider_id(self, provider_message_id: str) -> OutboundMessage | None:
        result = await self._db.execute(
            select(OutboundMessage).where(
                OutboundMessage.provider_message_id == provider_message_id
            )
        )
        return result.scalar_one_or_none()

    async def apply_status(
        self,
        provider_message_id: str,
        status: MessageStatus,
        *,
        occurred_at: datetime | None = None,
        pricing: dict[str, Any] | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Apply a provider status callback. Returns False when nothing changed."""
        message = await self.find_by_provider_id(provider_message_id)
        if message is None:
            logger.warning(
                "status_update_unknown_message",
                provider_message_id=provider_message_id,
                status=status.value,
            )
            return False

        current = MessageStatus(message.status)
        if not status_advances(current, status):
            logger.info(
                "status_update_ignored",
                message_id=str(message.id),
                current=current.value,
                status=status.value,
            )
            return False

        message.status = status.value
        setattr(message, _STAMPS[status], occurred_at or self._clock())
        if status is MessageStatus.FAILED:
            message.error_code = error_code
            message.error_message = error_message
            message.pricing = dict(ZERO_COST_PRICING)
        elif pricing and (status is MessageStatus.SENT or not message.pricing):
            message.pricing = pricing
        await self._db.flush()

        logger.info(
            "message_status_updated",
            message_id=str(message.id),
            provider_message_id=provider_message_id,
            previous=current.value,
            status=status.value,
        )
        return True
