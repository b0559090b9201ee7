"""Meta WhatsApp Cloud API webhook payload schemas.

Only the fields the dispatcher reads are modelled; everything else is
accepted and ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TextBody(_Lenient):
    body: str = ""


class Reaction(_Lenient):
    message_id: str | None = None
    emoji: str | None = None


class InboundMessage(_Lenient):
    id: str
    from_: str = Field(alias="from")
    timestamp: str | None = None
    type: str
    text: TextBody | None = None
    reaction: Reaction | None = None


class StatusError(_Lenient):
    code: int | str | None = None
    title: str | None = None
    message: str | None = None


class MessageStatusEvent(_Lenient):
    id: str
    status: str
    timestamp: str | None = None
    recipient_id: str | None = None
    pricing: dict[str, Any] | None = None
    errors: list[StatusError] = Field(default_factory=list)
    error: StatusError | None = None

    def first_error(self) -> StatusError | None:
        if self.errors:
            return self.errors[0]
        return self.error


class ChangeMetadata(_Lenient):
    display_phone_number: str | None = None
    phone_number_id: str | None = None


class ChangeValue(_Lenient):
    messaging_product: str | None = None
    metadata: ChangeMetadata | None = None
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)


class Change(_Lenient):
    field: str
    value: ChangeValue


class Entry(_Lenient):
    id: str
    time: int | None = None
    changes: list[Change] = Field(default_factory=list)


class WebhookPayload(_Lenient):
    object: str
    entry: list[Entry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    """POST /v1/webhook response body."""

    status: str
    queued: int = 0
    processed: int = 0
