"""Shared FastAPI dependencies — auth, database sessions, service injection."""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CompanyInactiveError, InvalidAPIKeyError
from app.core.security import hash_api_key
from app.db.postgres import get_async_session
from app.db.redis import RedisClient, get_redis as _get_redis
from app.jobs import build_engine, build_expiry_sweeper, build_webhook_processor
from app.models.company import Company
from app.services.companies import CompanyLookup
from app.services.conversation.engine import ConversationEngine
from app.services.lists.store import ListStore
from app.services.queue import TaskQueue
from app.services.sessions.expiry import ExpirySweeper
from app.services.sessions.store import SessionStore
from app.services.webhook import WebhookProcessor


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

async def get_db(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncSession:
    """Yield an async database session."""
    return session


# ---------------------------------------------------------------------------
# Redis / queue
# ---------------------------------------------------------------------------

async def get_redis() -> RedisClient:
    """Return the singleton RedisClient wrapper."""
    return await _get_redis()


async def get_task_queue(
    redis: RedisClient = Depends(get_redis),
) -> TaskQueue:
    return TaskQueue(redis)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

async def get_current_company(
    x_api_key: str = Header(..., alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> Company:
    """Authenticate and return the current company from the API key header."""
    if not x_api_key:
        raise InvalidAPIKeyError()

    company = await CompanyLookup(db).get_by_api_key_hash(hash_api_key(x_api_key))
    if company is None:
        raise InvalidAPIKeyError()

    if not company.is_active:
        raise CompanyInactiveError()

    return company


# ---------------------------------------------------------------------------
# Service constructors — wired via Depends()
# ---------------------------------------------------------------------------

async def get_session_store(db: AsyncSession = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


async def get_list_store(db: AsyncSession = Depends(get_db)) -> ListStore:
    return ListStore(db)


async def get_conversation_engine(
    db: AsyncSession = Depends(get_db),
) -> ConversationEngine:
    """Return a ConversationEngine wired to the WhatsApp Cloud transport."""
    return build_engine(db)


async def get_expiry_sweeper(db: AsyncSession = Depends(get_db)) -> ExpirySweeper:
    return build_expiry_sweeper(db)


async def get_webhook_processor(
    db: AsyncSession = Depends(get_db),
) -> WebhookProcessor:
    return build_webhook_processor(db)
