"""Shared pytest fixtures for the dispatcher test suite.

Provides in-memory stand-ins for every collaborator of the conversation core:
  - FakeClock: controllable UTC clock
  - FakeSessionStore / FakeListStore: dict-backed stores with the same
    contracts as the SQLAlchemy stores
  - FakeCompanyLookup: company registry with require_active semantics
  - RecordingTransport: MessageTransport that records every send
  - MockRedisClient: in-memory list operations for the task queue
  - api_client: FastAPI TestClient wired to all of the above

No database, Redis or network access happens in any test.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.core.exceptions import (
    CompanyInactiveError,
    CompanyNotFoundError,
    InvalidListTransitionError,
    ListRecordNotFoundError,
)
from app.main import app
from app.models.company import Company
from app.models.list_record import ListRecord, ListStatus, can_transition
from app.models.phone_session import PhoneSession, SessionState
from app.services.conversation.classifier import ConversationVocabulary
from app.services.conversation.engine import ConversationEngine, ConversationReplies
from app.services.lists.reconciler import ListReconciler
from app.services.queue import TaskQueue
from app.services.sessions.expiry import ExpirySweeper
from app.services.sessions.store import RenewalCandidate
from app.services.sessions.window import day_bounds
from app.services.transport.base import MessageTransport, SendStatus, TemplateSendResult
from app.services.webhook import WebhookProcessor

# 09:00 in Mexico City (UTC-6), well inside one local business day.
FIXED_NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
WINDOW = timedelta(hours=24)
BUSINESS_TZ = "America/Mexico_City"


def extend_deadline(current: datetime | None, now: datetime, window: timedelta) -> datetime:
    """Python twin of SessionStore._extended_deadline: GREATEST(COALESCE(current, now + w), now + w)."""
    candidate = now + window
    if current is None or candidate > current:
        return candidate
    return current


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def make_company(name: str = "acme", is_active: bool = True, **settings: Any) -> Company:
    return Company(
        id=uuid.uuid4(),
        name=name,
        api_key_hash=f"hash-{name}",
        settings=dict(settings),
        is_active=is_active,
        created_at=FIXED_NOW,
    )


class FakeCompanyLookup:
    def __init__(self, *companies: Company) -> None:
        self.companies: dict[uuid.UUID, Company] = {c.id: c for c in companies}

    def add(self, company: Company) -> Company:
        self.companies[company.id] = company
        return company

    async def get(self, company_id: uuid.UUID) -> Company | None:
        return self.companies.get(company_id)

    async def get_by_name(self, name: str) -> Company | None:
        return next((c for c in self.companies.values() if c.name == name), None)

    async def get_by_api_key_hash(self, api_key_hash: str) -> Company | None:
        return next(
            (c for c in self.companies.values() if c.api_key_hash == api_key_hash), None
        )

    async def require_active(self, company_id: uuid.UUID) -> Company:
        company = self.companies.get(company_id)
        if company is None:
            raise CompanyNotFoundError()
        if not company.is_active:
            raise CompanyInactiveError()
        return company


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class FakeSessionStore:
    """In-memory SessionStore. One active row per (company, phone)."""

    def __init__(self, clock: FakeClock, companies: FakeCompanyLookup) -> None:
        self._clock = clock
        self._companies = companies
        self.sessions: dict[uuid.UUID, PhoneSession] = {}
        self.step_updates: list[tuple[uuid.UUID, SessionState]] = []

    def add(
        self,
        phone_number: str,
        company_id: uuid.UUID,
        state: str = SessionState.WELCOME.value,
        expires_at: datetime | None = None,
        context: dict[str, Any] | None = None,
        active: bool = True,
        last_message_at: datetime | None = None,
    ) -> PhoneSession:
        now = self._clock()
        session = PhoneSession(
            id=uuid.uuid4(),
            company_id=company_id,
            phone_number=phone_number,
            state=state,
            context=dict(context or {}),
            last_message_at=last_message_at or now,
            session_started_at=None,
            session_expires_at=expires_at,
            active=active,
            created_at=now,
            updated_at=now,
        )
        self.sessions[session.id] = session
        return session

    def active_rows(self, phone_number: str, company_id: uuid.UUID) -> list[PhoneSession]:
        return [
            s
            for s in self.sessions.values()
            if s.phone_number == phone_number and s.company_id == company_id and s.active
        ]

    async def find_active(self, phone_number: str, company_id: uuid.UUID) -> PhoneSession | None:
        rows = self.active_rows(phone_number, company_id)
        return rows[0] if rows else None

    async def get(self, session_id: uuid.UUID) -> PhoneSession | None:
        return self.sessions.get(session_id)

    async def find_or_create(self, phone_number: str, company_id: uuid.UUID) -> PhoneSession:
        # Yield first so concurrent callers interleave like separate requests.
        await asyncio.sleep(0)
        existing = await self.find_active(phone_number, company_id)
        if existing is not None:
            return existing
        return self.add(phone_number, company_id)

    async def update_step(
        self,
        session_id: uuid.UUID,
        new_state: SessionState,
        context: dict[str, Any] | None = None,
    ) -> None:
        session = self.sessions[session_id]
        session.state = new_state.value
        if context is not None:
            session.context = dict(context)
        self.step_updates.append((session_id, new_state))

    async def update_context(self, session_id: uuid.UUID, context: dict[str, Any]) -> None:
        self.sessions[session_id].context = dict(context)

    async def update_expiry(self, session_id: uuid.UUID, inbound: bool = False) -> None:
        session = self.sessions[session_id]
        now = self._clock()
        session.session_expires_at = extend_deadline(session.session_expires_at, now, WINDOW)
        if inbound:
            session.last_message_at = now

    async def start_session(self, session_id: uuid.UUID) -> None:
        session = self.sessions[session_id]
        now = self._clock()
        session.session_started_at = now
        session.session_expires_at = extend_deadline(session.session_expires_at, now, WINDOW)

    async def is_expiring_soon(
        self, phone_number: str, company_id: uuid.UUID, hours_threshold: int = 4
    ) -> bool:
        session = await self.find_active(phone_number, company_id)
        if session is None or session.session_expires_at is None:
            return True
        return session.session_expires_at < self._clock() + timedelta(hours=hours_threshold)

    async def find_by_phone(self, phone_number: str) -> PhoneSession | None:
        rows = [s for s in self.sessions.values() if s.phone_number == phone_number and s.active]
        rows.sort(key=lambda s: s.last_message_at, reverse=True)
        return rows[0] if rows else None

    async def find_renewal_candidates(
        self, upper: datetime, lower: datetime
    ) -> list[RenewalCandidate]:
        result = []
        for session in sorted(
            self.sessions.values(),
            key=lambda s: s.session_expires_at or datetime.max.replace(tzinfo=timezone.utc),
        ):
            company = self._companies.companies.get(session.company_id)
            if (
                session.active
                and session.state != SessionState.WELCOME.value
                and session.session_expires_at is not None
                and lower < session.session_expires_at <= upper
                and company is not None
                and company.is_active
            ):
                result.append(RenewalCandidate(session=session, company=company))
        return result

    async def deactivate(self, session_id: uuid.UUID) -> None:
        self.sessions[session_id].active = False

    async def delete_inactive_older_than(self, days: int) -> int:
        cutoff = self._clock() - timedelta(days=days)
        doomed = [
            sid
            for sid, s in self.sessions.items()
            if not s.active and s.last_message_at < cutoff
        ]
        for sid in doomed:
            del self.sessions[sid]
        return len(doomed)


# ---------------------------------------------------------------------------
# List store
# ---------------------------------------------------------------------------


class FakeListStore:
    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.records: dict[uuid.UUID, ListRecord] = {}

    def add(
        self,
        session_id: uuid.UUID,
        list_id: str,
        status: ListStatus = ListStatus.PENDING,
        created_at: datetime | None = None,
    ) -> ListRecord:
        now = self._clock()
        record = ListRecord(
            id=uuid.uuid4(),
            session_id=session_id,
            list_id=list_id,
            status=status.value,
            metadata_={},
            created_at=created_at or now,
            updated_at=now,
        )
        self.records[record.id] = record
        return record

    async def get(self, record_id: uuid.UUID) -> ListRecord | None:
        return self.records.get(record_id)

    async def create_or_update(
        self, session_id: uuid.UUID, list_id: str, metadata: dict[str, Any] | None = None
    ) -> ListRecord:
        for record in self.records.values():
            if record.session_id == session_id and record.list_id == list_id:
                if not ListStatus(record.status).is_terminal:
                    record.metadata_ = dict(metadata or {})
                return record
        record = self.add(session_id, list_id)
        record.metadata_ = dict(metadata or {})
        return record

    async def mark_all_pending_accepted_for_today(self, session_id: uuid.UUID) -> int:
        now = self._clock()
        start, end = day_bounds(now, BUSINESS_TZ)
        count = 0
        for record in self.records.values():
            if (
                record.session_id == session_id
                and record.status == ListStatus.PENDING.value
                and start <= record.created_at < end
            ):
                record.status = ListStatus.ACCEPTED.value
                record.accepted_at = now
                count += 1
        return count

    async def update_status(self, record_id: uuid.UUID, status: ListStatus) -> ListRecord:
        record = self.records.get(record_id)
        if record is None:
            raise ListRecordNotFoundError()
        current = ListStatus(record.status)
        if current == status:
            return record
        if not can_transition(current, status):
            raise InvalidListTransitionError()
        record.status = status.value
        return record

    async def list_for_session(
        self, session_id: uuid.UUID, status: ListStatus | None = None
    ) -> list[ListRecord]:
        return [
            r
            for r in self.records.values()
            if r.session_id == session_id and (status is None or r.status == status.value)
        ]

    async def expire_stale(self, older_than_hours: int) -> int:
        cutoff = self._clock() - timedelta(hours=older_than_hours)
        count = 0
        for record in self.records.values():
            if not ListStatus(record.status).is_terminal and record.created_at < cutoff:
                record.status = ListStatus.EXPIRED.value
                count += 1
        return count

    async def delete_older_than(self, days: int) -> int:
        cutoff = self._clock() - timedelta(days=days)
        doomed = [rid for rid, r in self.records.items() if r.created_at < cutoff]
        for rid in doomed:
            del self.records[rid]
        return len(doomed)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class RecordingTransport(MessageTransport):
    """Records sends. Template outcomes can be scripted per phone number."""

    def __init__(self) -> None:
        self.texts: list[dict[str, Any]] = []
        self.templates: list[dict[str, Any]] = []
        self.template_results: dict[str, TemplateSendResult | Exception] = {}
        self.text_error: Exception | None = None

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
        self.templates.append(
            {
                "company_id": company_id,
                "phone_number": phone_number,
                "template_name": template_name,
                "params": list(params),
                "language": language,
                "list_id": list_id,
            }
        )
        outcome = self.template_results.get(phone_number)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return TemplateSendResult(
            status=SendStatus.SUCCESS,
            provider_message_id=f"wamid.{len(self.templates)}",
        )

    async def send_text(self, company_id: uuid.UUID, phone_number: str, body: str) -> str | None:
        if self.text_error is not None:
            raise self.text_error
        self.texts.append({"company_id": company_id, "phone_number": phone_number, "body": body})
        return f"wamid.text.{len(self.texts)}"

    def bodies_for(self, phone_number: str) -> list[str]:
        return [t["body"] for t in self.texts if t["phone_number"] == phone_number]


# ---------------------------------------------------------------------------
# Mock Redis Client
# ---------------------------------------------------------------------------


class MockRedisClient:
    """In-memory mock of RedisClient list operations."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}

    async def lpush(self, key: str, value: str) -> int:
        items = self.lists.setdefault(key, [])
        items.insert(0, value)
        return len(items)

    async def brpop(self, key: str, timeout_seconds: int) -> str | None:
        items = self.lists.get(key) or []
        if not items:
            return None
        return items.pop()

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key) or [])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

REPLIES = ConversationReplies(
    confirmation="confirmed",
    rejection="rejected",
    deflection="not receiving messages",
)

VOCABULARY = ConversationVocabulary.build(
    affirmative=["si", "sí", "yes", "ok", "vale", "claro", "perfecto", "entendido"],
    received=["recibido", "recibí", "listo", "ok", "vale", "gracias"],
    reaction_sentinel="__reaction__",
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def company() -> Company:
    return make_company("acme")


@pytest.fixture
def companies(company: Company) -> FakeCompanyLookup:
    return FakeCompanyLookup(company)


@pytest.fixture
def session_store(clock: FakeClock, companies: FakeCompanyLookup) -> FakeSessionStore:
    return FakeSessionStore(clock, companies)


@pytest.fixture
def list_store(clock: FakeClock) -> FakeListStore:
    return FakeListStore(clock)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def engine(
    session_store: FakeSessionStore,
    list_store: FakeListStore,
    transport: RecordingTransport,
    companies: FakeCompanyLookup,
) -> ConversationEngine:
    return ConversationEngine(
        session_store=session_store,
        list_reconciler=ListReconciler(list_store),
        transport=transport,
        company_lookup=companies,
        vocabulary=VOCABULARY,
        replies=REPLIES,
    )


@pytest.fixture
def mock_redis() -> MockRedisClient:
    return MockRedisClient()


@pytest.fixture
def message_store() -> AsyncMock:
    store = AsyncMock()
    store.apply_status.return_value = True
    return store


@pytest.fixture
def api_client(
    company: Company,
    companies: FakeCompanyLookup,
    session_store: FakeSessionStore,
    list_store: FakeListStore,
    transport: RecordingTransport,
    engine: ConversationEngine,
    mock_redis: MockRedisClient,
    message_store: AsyncMock,
    clock: FakeClock,
) -> Iterator[TestClient]:
    """TestClient with every service dependency replaced by the in-memory fakes.

    Entered without a context manager so the lifespan (scheduler, worker,
    real Redis/Postgres) never starts. The API key check is bypassed; tests
    that exercise it clear the get_current_company override.
    """
    processor = WebhookProcessor(
        engine=engine,
        session_store=session_store,
        company_lookup=companies,
        message_store=message_store,
        default_company_name=company.name,
    )
    app.dependency_overrides = {
        deps.get_current_company: lambda: company,
        deps.get_session_store: lambda: session_store,
        deps.get_list_store: lambda: list_store,
        deps.get_conversation_engine: lambda: engine,
        deps.get_expiry_sweeper: lambda: ExpirySweeper(session_store, transport, clock=clock),
        deps.get_webhook_processor: lambda: processor,
        deps.get_task_queue: lambda: TaskQueue(mock_redis),
    }
    yield TestClient(app)
    app.dependency_overrides.clear()
