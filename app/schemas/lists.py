"""List dispatch and tracking request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models.list_record import ListStatus


class ListSendBody(BaseModel):
    """POST /v1/lists/send request body."""

    list_id: str = Field(..., min_length=1, max_length=255)
    template_name: str = Field(..., min_length=1)
    recipients: list[str] = Field(..., min_length=1)
    parameters: list[str] = Field(default_factory=list)
    language: str | None = None


class ListSendResponse(BaseModel):
    """POST /v1/lists/send response body."""

    list_id: str
    queued: int
    job_ids: list[str]


class ListRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    list_id: str
    status: str
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    expired_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime


class ListRecordListResponse(BaseModel):
    """GET /v1/lists response body."""

    records: list[ListRecordResponse]
    total: int


class ListStatusUpdateBody(BaseModel):
    """PATCH /v1/lists/{record_id}/status request body."""

    status: ListStatus
