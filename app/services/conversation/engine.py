"""Per-phone conversation state machine.

ConversationEngine.handle_inbound_message() does these things in order:
1. Check the company exists and is active
2. Normalize the text (a reaction becomes the reaction sentinel)
3. Find or create the session for (company, phone)
4. Bump last_message_at and extend the window (always, never shrinking)
5. Classify, look up the transition and apply it

State is written before any reply is sent. Transport errors propagate to the
caller, which owns the transaction and the retry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from app.core.config import settings
from app.core.exceptions import SessionNotFoundError
from app.models.phone_session import SessionState
from app.services.companies import CompanyLookup
from app.services.conversation.classifier import (
    ConversationVocabulary,
    Signal,
    classify,
    normalize_text,
)
from app.services.conversation.transitions import Action, Transition, resolve_transition
from app.services.lists.reconciler import ListReconciler
from app.services.sessions.store import SessionStore
from app.services.sessions.window import utcnow
from app.services.transport.base import MessageTransport

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConversationReplies:
    confirmation: str
    rejection: str
    deflection: str

    @classmethod
    def from_settings(cls) -> "ConversationReplies":
        return cls(
            confirmation=settings.confirmation_reply,
            rejection=settings.rejection_reply,
            deflection=settings.deflection_reply,
        )


@dataclass(frozen=True)
class InboundOutcome:
    session_id: uuid.UUID
    previous_state: str
    new_state: SessionState
    signals: frozenset[Signal]
    action: Action
    reconciled: int = 0


class ConversationEngine:
    """Drives welcome -> accepted | rejected, and accepted <-> waiting_response."""

    def __init__(
        self,
        session_store: SessionStore,
        list_reconciler: ListReconciler,
        transport: MessageTransport,
        company_lookup: CompanyLookup,
        vocabulary: ConversationVocabulary | None = None,
        replies: ConversationReplies | None = None,
    ) -> None:
        self._sessions = session_store
        self._reconciler = list_reconciler
        self._transport = transport
        self._companies = company_lookup
        self._vocabulary = vocabulary or ConversationVocabulary.from_settings()
        self._replies = replies or ConversationReplies.from_settings()

    async def handle_inbound_message(
        self,
        phone_number: str,
        company_id: uuid.UUID,
        raw_text: str | None,
        is_reaction: bool = False,
    ) -> InboundOutcome:
        await self._companies.require_active(company_id)

        text = self._vocabulary.reaction_sentinel if is_reaction else normalize_text(raw_text)

        session = await self._sessions.find_or_create(phone_number, company_id)
        # Read before the expiry bump; the bulk update expires loaded attributes.
        session_id = session.id
        previous_state = session.state
        context = dict(session.context or {})

        await self._sessions.update_expiry(session_id, inbound=True)

        signals = classify(text, self._vocabulary)
        transition = resolve_transition(SessionState.parse(previous_state), signals)

        logger.info(
            "conversation_transition",
            session_id=str(session_id),
            phone_number=phone_number,
            company_id=str(company_id),
            previous_state=previous_state,
            new_state=transition.next_state.value,
            signals=sorted(s.value for s in signals),
            action=transition.action.value,
        )

        reconciled = await self._apply(
            transition,
            session_id=session_id,
            phone_number=phone_number,
            company_id=company_id,
            context=context,
            signals=signals,
        )

        return InboundOutcome(
            session_id=session_id,
            previous_state=previous_state,
            new_state=transition.next_state,
            signals=signals,
            action=transition.action,
            reconciled=reconciled,
        )

    async def _apply(
        self,
        transition: Transition,
        *,
        session_id: uuid.UUID,
        phone_number: str,
        company_id: uuid.UUID,
        context: dict[str, Any],
        signals: frozenset[Signal],
    ) -> int:
        action = transition.action

        if action is Action.CONFIRM:
            await self._sessions.start_session(session_id)
            context.update(accepted=True, accepted_at=utcnow().isoformat())
            await self._sessions.update_step(session_id, transition.next_state, context)
            await self._transport.send_text(
                company_id, phone_number, self._replies.confirmation
            )

        elif action is Action.REJECT:
            reason = (
                "empty_message" if Signal.INVALID in signals else "non_affirmative_response"
            )
            context.update(
                accepted=False,
                rejection_reason=reason,
                rejected_at=utcnow().isoformat(),
            )
            await self._sessions.update_step(session_id, transition.next_state, context)
            await self._transport.send_text(
                company_id, phone_number, self._replies.rejection
            )

        elif action is Action.RECONCILE:
            await self._sessions.update_step(session_id, transition.next_state)
            return await self._reconciler.reconcile(session_id)

        elif action is Action.DEFLECT:
            await self._transport.send_text(
                company_id, phone_number, self._replies.deflection
            )

        elif action is Action.RESET:
            logger.warning(
                "conversation_state_reset",
                session_id=str(session_id),
                phone_number=phone_number,
            )
            await self._sessions.update_step(session_id, transition.next_state)

        # ACKNOWLEDGE and IGNORE: the expiry bump already happened.
        return 0

    async def mark_as_waiting_response(
        self,
        phone_number: str,
        company_id: uuid.UUID,
    ) -> bool:
        """Move an accepted session to waiting_response after a list send.

        Returns True when the session is (now) waiting. Any other state is
        left alone and False is returned.
        """
        session = await self._sessions.find_active(phone_number, company_id)
        if session is None:
            raise SessionNotFoundError(
                f"No active session for {phone_number} in company {company_id}"
            )

        state = SessionState.parse(session.state)
        if state is SessionState.WAITING_RESPONSE:
            return True
        if state is not SessionState.ACCEPTED:
            logger.info(
                "waiting_response_not_applied",
                session_id=str(session.id),
                phone_number=phone_number,
                state=session.state,
            )
            return False

        await self._sessions.update_step(session.id, SessionState.WAITING_RESPONSE)
        logger.info(
            "session_waiting_response",
            session_id=str(session.id),
            phone_number=phone_number,
        )
        return True
