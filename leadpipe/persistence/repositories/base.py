"""Base repository with optional tenant scoping."""

from typing import Generic, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from leadpipe.persistence.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Shared lookups for models keyed by a string id.

    A ``tenant_id`` of None skips tenant scoping; compliance results are
    tenant-agnostic, so reconciliation reads and writes across tenants.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    def _scoped(self, stmt: Select, tenant_id: str | None) -> Select:
        if tenant_id is None or not hasattr(self.model, "tenant_id"):
            return stmt
        return stmt.where(self.model.tenant_id == tenant_id)

    async def get_by_id(self, tenant_id: str | None, id: str) -> ModelType | None:
        """Get entity by ID, scoped to tenant when one is given."""
        stmt = self._scoped(select(self.model).where(self.model.id == id), tenant_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, tenant_id: str | None, id: str, **data) -> ModelType | None:
        """Set the given columns and commit. Returns None when the entity is missing."""
        instance = await self.get_by_id(tenant_id, id)
        if instance is None:
            return None

        for key, value in data.items():
            setattr(instance, key, value)

        await self.session.commit()
        await self.session.refresh(instance)
        return instance
