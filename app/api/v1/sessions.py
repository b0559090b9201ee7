"""Phone session endpoints."""

from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    get_conversation_engine,
    get_current_company,
    get_expiry_sweeper,
    get_session_store,
)
from app.core.exceptions import SessionNotFoundError
from app.models.company import Company
from app.schemas.session import (
    DeactivateResponse,
    ExpiringSoonResponse,
    ExpiryCheckResponse,
    PhoneSessionResponse,
    WaitingResponseResult,
)
from app.services.conversation.engine import ConversationEngine
from app.services.sessions.expiry import ExpirySweeper
from app.services.sessions.store import SessionStore

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/expiry-check", response_model=ExpiryCheckResponse)
async def trigger_expiry_check(
    company: Company = Depends(get_current_company),
    sweeper: ExpirySweeper = Depends(get_expiry_sweeper),
) -> ExpiryCheckResponse:
    """Run the renewal sweep now and report the counts."""
    return ExpiryCheckResponse(**await sweeper.trigger())


@router.get("/{phone_number}", response_model=PhoneSessionResponse)
async def get_session(
    phone_number: str,
    company: Company = Depends(get_current_company),
    store: SessionStore = Depends(get_session_store),
) -> PhoneSessionResponse:
    session = await store.find_active(phone_number, company.id)
    if session is None:
        raise SessionNotFoundError()
    return PhoneSessionResponse.model_validate(session)


@router.get("/{phone_number}/expiring-soon", response_model=ExpiringSoonResponse)
async def get_expiring_soon(
    phone_number: str,
    hours_threshold: int = Query(4, ge=0, le=48),
    company: Company = Depends(get_current_company),
    store: SessionStore = Depends(get_session_store),
) -> ExpiringSoonResponse:
    expiring = await store.is_expiring_soon(phone_number, company.id, hours_threshold)
    return ExpiringSoonResponse(
        phone_number=phone_number,
        hours_threshold=hours_threshold,
        is_expiring_soon=expiring,
    )


@router.post("/{phone_number}/waiting-response", response_model=WaitingResponseResult)
async def mark_waiting_response(
    phone_number: str,
    company: Company = Depends(get_current_company),
    engine: ConversationEngine = Depends(get_conversation_engine),
) -> WaitingResponseResult:
    updated = await engine.mark_as_waiting_response(phone_number, company.id)
    return WaitingResponseResult(phone_number=phone_number, updated=updated)


@router.post("/{phone_number}/deactivate", response_model=DeactivateResponse)
async def deactivate_session(
    phone_number: str,
    company: Company = Depends(get_current_company),
    store: SessionStore = Depends(get_session_store),
) -> DeactivateResponse:
    """Close the active session; the next inbound message starts a new one."""
    session = await store.find_active(phone_number, company.id)
    if session is None:
        raise SessionNotFoundError()
    session_id = session.id
    await store.deactivate(session_id)
    return DeactivateResponse(session_id=session_id, active=False)
