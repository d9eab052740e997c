"""Lead repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadpipe.core.identity import normalize_cpf
from leadpipe.core.phone import normalize_phone
from leadpipe.persistence.models.lead import Lead
from leadpipe.persistence.repositories.base import BaseRepository


class LeadRepository(BaseRepository[Lead]):
    """Repository for Lead entities."""

    def __init__(self, session: AsyncSession):
        """Initialize lead repository."""
        super().__init__(Lead, session)

    async def find_by_cpf(self, cpf: str) -> list[Lead]:
        """Find every lead with this CPF, across tenants.

        Args:
            cpf: Raw or normalized CPF

        Returns:
            Leads that belong to a tenant, oldest first
        """
        cpf_key = normalize_cpf(cpf)
        if not cpf_key:
            return []
        stmt = (
            select(Lead)
            .where(Lead.cpf_normalized == cpf_key, Lead.tenant_id.is_not(None))
            .order_by(Lead.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_phone(self, phone: str) -> list[Lead]:
        """Find every lead with this phone, across tenants.

        Args:
            phone: Raw or normalized phone

        Returns:
            Leads that belong to a tenant, oldest first
        """
        phone_key = normalize_phone(phone)
        if not phone_key:
            return []
        stmt = (
            select(Lead)
            .where(Lead.phone_normalized == phone_key, Lead.tenant_id.is_not(None))
            .order_by(Lead.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_submission_id(self, submission_id: str, tenant_id: str | None = None) -> Lead | None:
        """Get the lead created from a form submission."""
        stmt = select(Lead).where(Lead.submission_id == submission_id)
        if tenant_id is not None:
            stmt = stmt.where(Lead.tenant_id == tenant_id)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()
