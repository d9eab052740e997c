"""Lead lookups and compliance status updates on the local leads database."""

import logging
from datetime import datetime
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadpipe.core.dates import utcnow
from leadpipe.core.identity import mask_cpf, normalize_cpf
from leadpipe.core.phone import mask_phone, normalize_phone
from leadpipe.domain.models import PipelineStage
from leadpipe.persistence.models.lead import Lead
from leadpipe.persistence.repositories.lead_label_repository import LeadLabelRepository
from leadpipe.persistence.repositories.lead_repository import LeadRepository

logger = logging.getLogger(__name__)

CpfStatus = Literal["approved", "rejected"]

# Check ids made up for results that carry none; never stored on the lead
SYNTHETIC_CHECK_PREFIX = "cliente-"

FORM_STATUS_BY_CPF_STATUS = {
    "approved": "cpf_approved",
    "rejected": "cpf_rejected",
}
PIPELINE_STATUS_BY_CPF_STATUS = {
    "approved": PipelineStage.CPF_APROVADO,
    "rejected": PipelineStage.CPF_REPROVADO,
}


class LeadStatusService:
    """Finds leads for a compliance result and applies its outcome.

    Each operation runs in its own session so one failing lead never poisons
    the others in a batch.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_leads_by_cpf(self, cpf: str | None) -> list[Lead]:
        cpf_key = normalize_cpf(cpf)
        if not cpf_key:
            return []
        async with self.session_factory() as session:
            leads = await LeadRepository(session).find_by_cpf(cpf_key)
        logger.info(f"[LEADS] {len(leads)} lead(s) with CPF {mask_cpf(cpf_key)}")
        return leads

    async def find_leads_by_phone(self, phone: str | None) -> list[Lead]:
        phone_key = normalize_phone(phone)
        if not phone_key:
            return []
        async with self.session_factory() as session:
            leads = await LeadRepository(session).find_by_phone(phone_key)
        logger.info(f"[LEADS] {len(leads)} lead(s) with phone {mask_phone(phone_key)}")
        return leads

    async def find_lead_by_submission_id(self, submission_id: str | None, tenant_id: str | None = None) -> Lead | None:
        if not submission_id:
            return None
        async with self.session_factory() as session:
            return await LeadRepository(session).find_by_submission_id(submission_id, tenant_id)

    async def resolve_leads(self, cpf: str | None, phone: str | None) -> list[Lead]:
        """Leads for a compliance result: exact CPF first, phone only if CPF finds none."""
        leads = await self.find_leads_by_cpf(cpf)
        if not leads:
            leads = await self.find_leads_by_phone(phone)
        return leads

    async def apply_lead_update(
        self,
        lead_id: str,
        cpf_status: CpfStatus,
        check_id: str | None = None,
        checked_at: datetime | None = None,
    ) -> bool:
        """Write a compliance outcome onto a lead.

        Sets ``form_status``, ``cpf_status``, ``cpf_checked_at`` and
        ``pipeline_status``; picks the automatic label for the new form status
        when one is configured, and records the check id unless it is synthetic.

        Returns:
            True when the lead was updated
        """
        form_status = FORM_STATUS_BY_CPF_STATUS[cpf_status]
        values = {
            "form_status": form_status,
            "cpf_status": cpf_status,
            # Stored naive UTC, like the other timestamp columns
            "cpf_checked_at": (checked_at or utcnow()).replace(tzinfo=None),
            "pipeline_status": PIPELINE_STATUS_BY_CPF_STATUS[cpf_status].value,
        }
        if check_id and not check_id.startswith(SYNTHETIC_CHECK_PREFIX):
            values["cpf_check_id"] = check_id

        try:
            async with self.session_factory() as session:
                label = await LeadLabelRepository(session).get_active_by_form_status(form_status)
                if label is None:
                    logger.warning(f"[LEADS] No active label for form status {form_status}")
                else:
                    values["label_id"] = label.id

                lead = await LeadRepository(session).update(None, lead_id, **values)
                if lead is None:
                    logger.warning(f"[LEADS] Lead {lead_id} not found")
                    return False
        except SQLAlchemyError as e:
            logger.error(f"[LEADS] Failed to update lead {lead_id}: {e}", exc_info=True)
            return False

        logger.info(
            f"[LEADS] Lead {lead_id} updated: cpf_status={cpf_status}, "
            f"pipeline_status={values['pipeline_status']}"
            + (f", label={label.name}" if label else "")
        )
        return True
