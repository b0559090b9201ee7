"""Phone session request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class PhoneSessionResponse(BaseModel):
    """GET /v1/sessions/{phone_number} response body."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    phone_number: str
    state: str
    context: dict[str, Any]
    last_message_at: datetime
    session_started_at: datetime | None = None
    session_expires_at: datetime | None = None
    active: bool


class ExpiringSoonResponse(BaseModel):
    """GET /v1/sessions/{phone_number}/expiring-soon response body."""

    phone_number: str
    hours_threshold: int
    is_expiring_soon: bool


class WaitingResponseResult(BaseModel):
    """POST /v1/sessions/{phone_number}/waiting-response response body."""

    phone_number: str
    updated: bool


class DeactivateResponse(BaseModel):
    """POST /v1/sessions/{phone_number}/deactivate response body."""

    session_id: uuid.UUID
    active: bool


class SweepReportBody(BaseModel):
    candidates: int
    success: int
    skipped: int
    errors: int
    duplicates: int


class ExpiryCheckResponse(BaseModel):
    """POST /v1/sessions/expiry-check response body."""

    status: str
    message: str
    report: SweepReportBody | None = None
