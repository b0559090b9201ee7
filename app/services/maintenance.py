"""Nightly cleanup: expire stale lists and apply retention."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import structlog

from app.core.config import settings
from app.services.lists.store import ListStore
from app.services.sessions.store import SessionStore

logger = structlog.get_logger(__name__)


@dataclass
class MaintenanceReport:
    lists_expired: int = 0
    lists_deleted: int = 0
    sessions_deleted: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class MaintenanceService:
    def __init__(self, session_store: SessionStore, list_store: ListStore) -> None:
        self._sessions = session_store
        self._lists = list_store

    async def run(self) -> MaintenanceReport:
        report = MaintenanceReport()
        report.lists_expired = await self._lists.expire_stale(settings.list_expiry_hours)
        # Lists go first; they reference sessions.
        report.lists_deleted = await self._lists.delete_older_than(settings.list_retention_days)
        report.sessions_deleted = await self._sessions.delete_inactive_older_than(
            settings.session_retention_days
        )
        logger.info("maintenance_completed", **report.to_dict())
        return report
