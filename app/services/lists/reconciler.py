"""Closes out a session's pending lists once the customer acknowledges them."""

from __future__ import annotations

import uuid
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class PendingListMarker(Protocol):
    async def mark_all_pending_accepted_for_today(self, session_id: uuid.UUID) -> int: ...


class ListReconciler:
    def __init__(self, list_store: PendingListMarker) -> None:
        self._lists = list_store

    async def reconcile(self, session_id: uuid.UUID) -> int:
        """Accept every pending list created today for the session.

        Safe to re-run: with nothing pending it returns 0.
        """
        accepted = await self._lists.mark_all_pending_accepted_for_today(session_id)
        logger.info("lists_reconciled", session_id=str(session_id), accepted=accepted)
        return accepted
