"""FastAPI dependencies for services and tenant resolution."""

from typing import Annotated

from fastapi import Depends, HTTPException, Path, status

from leadpipe.core.encryption import get_encryption_service
from leadpipe.core.tenant_context import set_tenant_context
from leadpipe.domain.services.journey_aggregator import JourneyAggregator
from leadpipe.domain.services.lead_status_service import LeadStatusService
from leadpipe.domain.services.source_fetchers import SourceFetchers
from leadpipe.infrastructure.remote_data_client import get_remote_data_client
from leadpipe.persistence.database import AsyncSessionLocal
from leadpipe.workers.compliance_poller import CompliancePoller

_compliance_poller: CompliancePoller | None = None


def get_compliance_poller() -> CompliancePoller:
    """Get the process-wide compliance poller."""
    global _compliance_poller
    if _compliance_poller is None:
        _compliance_poller = CompliancePoller(
            client=get_remote_data_client(),
            lead_status=LeadStatusService(AsyncSessionLocal),
        )
    return _compliance_poller


def get_journey_aggregator() -> JourneyAggregator:
    """Get a journey aggregator reading from the Remote Data API."""
    fetchers = SourceFetchers(get_remote_data_client(), encryption=get_encryption_service())
    return JourneyAggregator(fetchers)


async def require_tenant_context(
    tenant_id: Annotated[str, Path(description="Tenant whose data is read")],
) -> str:
    """Validate the tenant path parameter and tag logs with it.

    Raises:
        HTTPException: If the tenant id is blank
    """
    tenant_id = tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="tenant_id is required",
        )
    set_tenant_context(tenant_id)
    return tenant_id


TenantId = Annotated[str, Depends(require_tenant_context)]
Aggregator = Annotated[JourneyAggregator, Depends(get_journey_aggregator)]
Poller = Annotated[CompliancePoller, Depends(get_compliance_poller)]
