"""Scheduled jobs and queue-worker handlers.

Each entry point opens its own database session, wires the services it
needs and commits on success. Scheduled jobs never raise into APScheduler.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import TransportError
from app.db.postgres import async_session_factory
from app.db.redis import RedisClient
from app.services.companies import CompanyLookup
from app.services.conversation.engine import ConversationEngine
from app.services.lists.dispatch import ListDispatchService, ListSendRequest
from app.services.lists.reconciler import ListReconciler
from app.services.lists.store import ListStore
from app.services.maintenance import MaintenanceService
from app.services.messages import OutboundMessageStore
from app.services.queue import (
    JOB_INBOUND_MESSAGE,
    JOB_LIST_MESSAGE_SEND,
    JOB_STATUS_UPDATE,
    TaskQueue,
    TaskWorker,
)
from app.services.sessions.expiry import ExpirySweeper
from app.services.sessions.store import SessionStore
from app.services.transport.whatsapp_cloud import WhatsAppCloudTransport
from app.services.webhook import WebhookProcessor

logger = structlog.get_logger(__name__)


def build_transport(db: AsyncSession, window_guard: SessionStore | None = None) -> WhatsAppCloudTransport:
    return WhatsAppCloudTransport(
        message_store=OutboundMessageStore(db),
        company_lookup=CompanyLookup(db),
        window_guard=window_guard,
    )


def build_engine(db: AsyncSession) -> ConversationEngine:
    return ConversationEngine(
        session_store=SessionStore(db),
        list_reconciler=ListReconciler(ListStore(db)),
        transport=build_transport(db),
        company_lookup=CompanyLookup(db),
    )


def build_webhook_processor(db: AsyncSession) -> WebhookProcessor:
    return WebhookProcessor(
        engine=build_engine(db),
        session_store=SessionStore(db),
        company_lookup=CompanyLookup(db),
        message_store=OutboundMessageStore(db),
    )


def build_list_dispatch(db: AsyncSession) -> ListDispatchService:
    return ListDispatchService(
        session_store=SessionStore(db),
        list_store=ListStore(db),
        transport=build_transport(db),
        engine=build_engine(db),
    )


@asynccontextmanager
async def recipient_transaction(db: AsyncSession) -> AsyncIterator[None]:
    """Savepoint per renewal recipient, committed as soon as it succeeds.

    A failing recipient rolls back only its own savepoint and leaves the
    session usable; a successful one is durable before the next send.
    """
    async with db.begin_nested():
        yield
    await db.commit()


def build_expiry_sweeper(db: AsyncSession) -> ExpirySweeper:
    sessions = SessionStore(db)
    return ExpirySweeper(
        session_store=sessions,
        transport=build_transport(db, window_guard=sessions),
        recipient_scope=lambda: recipient_transaction(db),
    )


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------

async def run_expiry_sweep() -> None:
    """Renewal sweep. Called by APScheduler on the configured cron."""
    try:
        async with async_session_factory() as db:
            await build_expiry_sweeper(db).run()
            await db.commit()
    except Exception as e:
        logger.error("expiry_sweep_job_failed", error=str(e))


async def run_maintenance() -> None:
    """List expiry and retention cleanup. Called by APScheduler nightly."""
    try:
        async with async_session_factory() as db:
            await MaintenanceService(SessionStore(db), ListStore(db)).run()
            await db.commit()
    except Exception as e:
        logger.error("maintenance_job_failed", error=str(e))


# ---------------------------------------------------------------------------
# Queue handlers
# ---------------------------------------------------------------------------

async def handle_inbound_message_job(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        await build_webhook_processor(db).handle_inbound(payload)
        await db.commit()


async def handle_status_update_job(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        await build_webhook_processor(db).handle_status(payload)
        await db.commit()


async def handle_list_send_job(payload: dict[str, Any]) -> None:
    request = ListSendRequest.from_payload(payload)
    async with async_session_factory() as db:
        try:
            await build_list_dispatch(db).dispatch(request)
        except TransportError:
            # Keep the failed list record and message row.
            await db.commit()
            raise
        await db.commit()


def build_worker(redis: RedisClient) -> TaskWorker:
    return TaskWorker(
        queue=TaskQueue(redis),
        handlers={
            JOB_INBOUND_MESSAGE: handle_inbound_message_job,
            JOB_STATUS_UPDATE: handle_status_update_job,
            JOB_LIST_MESSAGE_SEND: handle_list_send_job,
        },
    )
