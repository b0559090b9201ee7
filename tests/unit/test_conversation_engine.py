"""Unit tests for ConversationEngine.

Covers the end-to-end conversation scenarios:
  1. new phone sends "Hola" -> rejected, rejection reply
  2. new phone sends "Si" -> accepted, fresh 24h window, confirmation reply
  3. accepted -> waiting_response -> "Recibido" -> accepted, today's lists accepted
  6. two concurrent "Si" for a new phone -> one session, accepted
plus idempotence, reactions, empty text, deflection, self-healing and
transport error propagation.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import (
    CompanyInactiveError,
    CompanyNotFoundError,
    SessionNotFoundError,
    TransportError,
)
from app.models.list_record import ListStatus
from app.models.phone_session import SessionState
from app.services.conversation.classifier import Signal
from app.services.conversation.transitions import Action
from tests.conftest import REPLIES, make_company

PHONE = "5215550001111"


class TestWelcome:
    @pytest.mark.asyncio
    async def test_hola_rejects_new_session(self, engine, session_store, transport, company) -> None:
        """Scenario 1: non-affirmative first reply."""
        outcome = await engine.handle_inbound_message(PHONE, company.id, "Hola")

        session = await session_store.find_active(PHONE, company.id)
        assert session is not None
        assert session.state == SessionState.REJECTED.value
        assert session.context["rejection_reason"] == "non_affirmative_response"
        assert outcome.previous_state == SessionState.WELCOME.value
        assert outcome.action == Action.REJECT
        assert transport.bodies_for(PHONE) == [REPLIES.rejection]

    @pytest.mark.asyncio
    async def test_si_accepts_and_opens_window(
        self, engine, session_store, transport, company, clock
    ) -> None:
        """Scenario 2: affirmative first reply opens a fresh 24h window."""
        outcome = await engine.handle_inbound_message(PHONE, company.id, "Si")

        session = await session_store.find_active(PHONE, company.id)
        assert session.state == SessionState.ACCEPTED.value
        assert session.session_started_at == clock.now
        assert session.session_expires_at == clock.now + timedelta(hours=24)
        assert session.context["accepted"] is True
        assert outcome.action == Action.CONFIRM
        assert transport.bodies_for(PHONE) == [REPLIES.confirmation]

    @pytest.mark.asyncio
    async def test_empty_text_rejects(self, engine, session_store, transport, company) -> None:
        outcome = await engine.handle_inbound_message(PHONE, company.id, "   ")

        session = await session_store.find_active(PHONE, company.id)
        assert session.state == SessionState.REJECTED.value
        assert session.context["rejection_reason"] == "empty_message"
        assert outcome.signals == frozenset({Signal.INVALID})

    @pytest.mark.asyncio
    async def test_reaction_accepts(self, engine, session_store, company) -> None:
        """A reaction counts as affirmative whatever the emoji."""
        outcome = await engine.handle_inbound_message(PHONE, company.id, "😡", is_reaction=True)

        session = await session_store.find_active(PHONE, company.id)
        assert session.state == SessionState.ACCEPTED.value
        assert outcome.action == Action.CONFIRM

    @pytest.mark.asyncio
    async def test_repeated_si_is_idempotent(self, engine, session_store, transport, company) -> None:
        await engine.handle_inbound_message(PHONE, company.id, "Si")
        second = await engine.handle_inbound_message(PHONE, company.id, "Si")

        session = await session_store.find_active(PHONE, company.id)
        assert session.state == SessionState.ACCEPTED.value
        assert second.action == Action.IGNORE
        assert len(session_store.active_rows(PHONE, company.id)) == 1
        assert transport.bodies_for(PHONE) == [REPLIES.confirmation]

    @pytest.mark.asyncio
    async def test_concurrent_si_creates_one_session(self, engine, session_store, company) -> None:
        """Scenario 6: concurrent first messages converge on one row."""
        await asyncio.gather(
            engine.handle_inbound_message(PHONE, company.id, "Si"),
            engine.handle_inbound_message(PHONE, company.id, "Si"),
        )

        rows = session_store.active_rows(PHONE, company.id)
        assert len(rows) == 1
        assert rows[0].state == SessionState.ACCEPTED.value


class TestAcceptedAndWaiting:
    @pytest.mark.asyncio
    async def test_received_while_accepted_extends_without_reply(
        self, engine, session_store, transport, company, clock
    ) -> None:
        session = session_store.add(
            PHONE, company.id, state="accepted", expires_at=clock.now + timedelta(hours=2)
        )

        outcome = await engine.handle_inbound_message(PHONE, company.id, "recibido")

        assert outcome.action == Action.ACKNOWLEDGE
        assert session.state == SessionState.ACCEPTED.value
        assert session.session_expires_at == clock.now + timedelta(hours=24)
        assert transport.texts == []

    @pytest.mark.asyncio
    async def test_other_text_while_accepted_is_noop(self, engine, session_store, transport, company) -> None:
        session = session_store.add(PHONE, company.id, state="accepted")

        outcome = await engine.handle_inbound_message(PHONE, company.id, "cuando llega?")

        assert outcome.action == Action.IGNORE
        assert session.state == SessionState.ACCEPTED.value
        assert transport.texts == []

    @pytest.mark.asyncio
    async def test_received_reconciles_todays_lists(
        self, engine, session_store, list_store, company, clock
    ) -> None:
        """Scenario 3: waiting_response + "Recibido" accepts today's pending lists."""
        session = session_store.add(
            PHONE, company.id, state="accepted", expires_at=clock.now + timedelta(hours=1)
        )
        assert await engine.mark_as_waiting_response(PHONE, company.id) is True
        assert session.state == SessionState.WAITING_RESPONSE.value

        today_a = list_store.add(session.id, "list-a")
        today_b = list_store.add(session.id, "list-b")
        yesterday = list_store.add(session.id, "list-old", created_at=clock.now - timedelta(days=1))
        done = list_store.add(session.id, "list-failed", status=ListStatus.FAILED)

        outcome = await engine.handle_inbound_message(PHONE, company.id, "Recibido")

        assert outcome.action == Action.RECONCILE
        assert outcome.reconciled == 2
        assert session.state == SessionState.ACCEPTED.value
        assert session.session_expires_at == clock.now + timedelta(hours=24)
        assert today_a.status == ListStatus.ACCEPTED.value
        assert today_a.accepted_at == clock.now
        assert today_b.status == ListStatus.ACCEPTED.value
        assert yesterday.status == ListStatus.PENDING.value
        assert done.status == ListStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_other_text_while_waiting_stays_waiting(
        self, engine, session_store, list_store, company
    ) -> None:
        session = session_store.add(PHONE, company.id, state="waiting_response")
        record = list_store.add(session.id, "list-a")

        outcome = await engine.handle_inbound_message(PHONE, company.id, "hola")

        assert outcome.action == Action.IGNORE
        assert session.state == SessionState.WAITING_RESPONSE.value
        assert record.status == ListStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_reaction_while_waiting_reconciles(
        self, engine, session_store, list_store, company
    ) -> None:
        session = session_store.add(PHONE, company.id, state="waiting_response")
        list_store.add(session.id, "list-a")

        outcome = await engine.handle_inbound_message(PHONE, company.id, "👍", is_reaction=True)

        assert outcome.reconciled == 1
        assert session.state == SessionState.ACCEPTED.value


class TestRejectedAndCorrupt:
    @pytest.mark.asyncio
    async def test_rejected_always_deflects(self, engine, session_store, transport, company) -> None:
        session = session_store.add(PHONE, company.id, state="rejected")

        for text in ["si", "recibido", ""]:
            await engine.handle_inbound_message(PHONE, company.id, text)

        assert session.state == SessionState.REJECTED.value
        assert transport.bodies_for(PHONE) == [REPLIES.deflection] * 3

    @pytest.mark.asyncio
    async def test_unknown_state_resets_to_welcome(self, engine, session_store, transport, company) -> None:
        session = session_store.add(PHONE, company.id, state="waiting_confirmation")

        outcome = await engine.handle_inbound_message(PHONE, company.id, "si")

        assert outcome.action == Action.RESET
        assert session.state == SessionState.WELCOME.value
        assert transport.texts == []

    @pytest.mark.asyncio
    async def test_expiry_bumped_for_every_branch(self, engine, session_store, company, clock) -> None:
        session = session_store.add(PHONE, company.id, state="rejected")
        clock.advance(hours=1)

        await engine.handle_inbound_message(PHONE, company.id, "hola")

        assert session.last_message_at == clock.now
        assert session.session_expires_at == clock.now + timedelta(hours=24)


class TestFailures:
    @pytest.mark.asyncio
    async def test_transport_error_propagates_after_state_write(
        self, engine, session_store, transport, company
    ) -> None:
        transport.text_error = TransportError("provider down")

        with pytest.raises(TransportError):
            await engine.handle_inbound_message(PHONE, company.id, "si")

        session = await session_store.find_active(PHONE, company.id)
        assert session.state == SessionState.ACCEPTED.value

    @pytest.mark.asyncio
    async def test_unknown_company_raises(self, engine) -> None:
        with pytest.raises(CompanyNotFoundError):
            await engine.handle_inbound_message(PHONE, make_company("ghost").id, "si")

    @pytest.mark.asyncio
    async def test_inactive_company_raises(self, engine, companies, session_store) -> None:
        inactive = companies.add(make_company("dormant", is_active=False))

        with pytest.raises(CompanyInactiveError):
            await engine.handle_inbound_message(PHONE, inactive.id, "si")
        assert session_store.sessions == {}


class TestMarkAsWaitingResponse:
    @pytest.mark.asyncio
    async def test_missing_session_raises(self, engine, company) -> None:
        with pytest.raises(SessionNotFoundError):
            await engine.mark_as_waiting_response(PHONE, company.id)

    @pytest.mark.asyncio
    async def test_already_waiting_is_true(self, engine, session_store, company) -> None:
        session_store.add(PHONE, company.id, state="waiting_response")
        assert await engine.mark_as_waiting_response(PHONE, company.id) is True
        assert session_store.step_updates == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["welcome", "rejected"])
    async def test_other_states_untouched(self, engine, session_store, company, state) -> None:
        session = session_store.add(PHONE, company.id, state=state)

        assert await engine.mark_as_waiting_response(PHONE, company.id) is False
        assert session.state == state
