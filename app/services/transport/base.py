"""Abstract outbound messaging transport.

All provider clients must implement this interface.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class SendStatus(str, Enum):
    SUCCESS = "success"
    # Nothing to send, e.g. the customer window is already open.
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TemplateSendResult:
    status: SendStatus
    provider_message_id: str | None = None
    detail: str | None = None


class MessageTransport(ABC):
    """Interface for sending WhatsApp messages on behalf of a company."""

    @abstractmethod
    async def send_template(
        self,
        company_id: uuid.UUID,
        phone_number: str,
        template_name: str,
        params: list[str],
        language: str,
        *,
        list_id: str | None = None,
    ) -> TemplateSendResult:
        """Send an approved template message.

        Provider-side rejections come back as a FAILED result; network-level
        failures raise TransportError.
        """
        ...

    @abstractmethod
    async def send_text(
        self,
        company_id: uuid.UUID,
        phone_number: str,
        body: str,
    ) -> str | None:
        """Send a free-form text message. Returns the provider message id.

        Raises TransportError on any failure.
        """
        ...
