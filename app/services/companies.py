"""Company lookups used by the conversation core and the API layer."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CompanyInactiveError, CompanyNotFoundError
from app.models.company import Company


class CompanyLookup:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, company_id: uuid.UUID) -> Company | None:
        return await self._db.get(Company, company_id)

    async def get_by_name(self, name: str) -> Company | None:
        result = await self._db.execute(select(Company).where(Company.name == name))
        return result.scalar_one_or_none()

    async def get_by_api_key_hash(self, api_key_hash: str) -> Company | None:
        result = await self._db.execute(
            select(Company).where(Company.api_key_hash == api_key_hash)
        )
        return result.scalar_one_or_none()

    async def require_active(self, company_id: uuid.UUID) -> Company:
        """Return the company or raise if it is missing or disabled."""
        company = await self.get(company_id)
        if company is None:
            raise CompanyNotFoundError(f"Company {company_id} not found")
        if not company.is_active:
            raise CompanyInactiveError(f"Company {company.name} is not active")
        return company
