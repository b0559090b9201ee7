"""List dispatch and tracking endpoints."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    get_current_company,
    get_list_store,
    get_session_store,
    get_task_queue,
)
from app.core.exceptions import ListRecordNotFoundError, SessionNotFoundError
from app.models.company import Company
from app.models.list_record import ListStatus
from app.schemas.lists import (
    ListRecordListResponse,
    ListRecordResponse,
    ListSendBody,
    ListSendResponse,
    ListStatusUpdateBody,
)
from app.services.lists.dispatch import ListSendRequest
from app.services.lists.store import ListStore
from app.services.queue import JOB_LIST_MESSAGE_SEND, TaskQueue
from app.services.sessions.store import SessionStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/lists", tags=["lists"])


@router.post("/send", response_model=ListSendResponse, status_code=202)
async def send_list(
    body: ListSendBody,
    company: Company = Depends(get_current_company),
    queue: TaskQueue = Depends(get_task_queue),
) -> ListSendResponse:
    """Queue one list-message-send job per recipient."""
    job_ids = []
    for phone_number in dict.fromkeys(body.recipients):
        request = ListSendRequest(
            company_id=company.id,
            phone_number=phone_number,
            list_id=body.list_id,
            template_name=body.template_name,
            parameters=body.parameters,
            language=body.language,
        )
        job_ids.append(await queue.enqueue(JOB_LIST_MESSAGE_SEND, request.to_payload()))

    logger.info(
        "list_send_queued",
        company_id=str(company.id),
        list_id=body.list_id,
        recipients=len(job_ids),
    )
    return ListSendResponse(list_id=body.list_id, queued=len(job_ids), job_ids=job_ids)


@router.get("", response_model=ListRecordListResponse)
async def list_records(
    phone_number: str = Query(...),
    status: ListStatus | None = Query(None),
    company: Company = Depends(get_current_company),
    sessions: SessionStore = Depends(get_session_store),
    lists: ListStore = Depends(get_list_store),
) -> ListRecordListResponse:
    session = await sessions.find_active(phone_number, company.id)
    if session is None:
        raise SessionNotFoundError()
    records = await lists.list_for_session(session.id, status)
    return ListRecordListResponse(
        records=[ListRecordResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.patch("/{record_id}/status", response_model=ListRecordResponse)
async def update_list_status(
    record_id: uuid.UUID,
    body: ListStatusUpdateBody,
    company: Company = Depends(get_current_company),
    sessions: SessionStore = Depends(get_session_store),
    lists: ListStore = Depends(get_list_store),
) -> ListRecordResponse:
    record = await lists.get(record_id)
    if record is None:
        raise ListRecordNotFoundError()
    session = await sessions.get(record.session_id)
    if session is None or session.company_id != company.id:
        raise ListRecordNotFoundError()

    updated = await lists.update_status(record_id, body.status)
    return ListRecordResponse.model_validate(updated)
