"""Lead label repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadpipe.persistence.models.lead_label import LeadLabel
from leadpipe.persistence.repositories.base import BaseRepository


class LeadLabelRepository(BaseRepository[LeadLabel]):
    """Repository for LeadLabel entities. Labels are global, not tenant-scoped."""

    def __init__(self, session: AsyncSession):
        super().__init__(LeadLabel, session)

    async def get_active_by_form_status(self, form_status: str) -> LeadLabel | None:
        """Get the automatic label for a form status.

        Only active labels without a qualification status are considered.
        """
        stmt = (
            select(LeadLabel)
            .where(
                LeadLabel.form_status == form_status,
                LeadLabel.qualification_status.is_(None),
                LeadLabel.is_active.is_(True),
            )
            .order_by(LeadLabel.position, LeadLabel.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
