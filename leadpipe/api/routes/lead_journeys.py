"""Lead journey and pipeline endpoints."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from leadpipe.api.deps import Aggregator, TenantId
from leadpipe.domain.models import LeadJourney, PipelineStage
from leadpipe.domain.services.pipeline_classifier import stage_label

router = APIRouter()


class StageCount(BaseModel):
    stage: PipelineStage
    label: str
    count: int


class StageCountsResponse(BaseModel):
    tenant_id: str
    total: int
    stages: list[StageCount]


@router.get(
    "/{tenant_id}/lead-journeys",
    response_model=list[LeadJourney],
    response_model_by_alias=True,
)
async def list_lead_journeys(tenant_id: TenantId, aggregator: Aggregator) -> list[LeadJourney]:
    """All journeys of the tenant, most recently updated first."""
    return await aggregator.aggregate_lead_journeys(tenant_id)


@router.get(
    "/{tenant_id}/lead-journeys/by-phone/{phone}",
    response_model=LeadJourney,
    response_model_by_alias=True,
)
async def get_lead_journey_by_phone(phone: str, tenant_id: TenantId, aggregator: Aggregator) -> LeadJourney:
    journey = await aggregator.get_lead_journey_by_phone(tenant_id, phone)
    if journey is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Lead journey not found",
        )
    return journey


@router.get(
    "/{tenant_id}/lead-journeys/stages/{stage}",
    response_model=list[LeadJourney],
    response_model_by_alias=True,
)
async def list_lead_journeys_by_stage(stage: str, tenant_id: TenantId, aggregator: Aggregator) -> list[LeadJourney]:
    """Journeys currently in one stage. Unknown stages yield an empty list."""
    return await aggregator.get_lead_journeys_by_stage(tenant_id, stage)


@router.get("/{tenant_id}/pipeline/stage-counts", response_model=StageCountsResponse)
async def get_pipeline_stage_counts(tenant_id: TenantId, aggregator: Aggregator) -> StageCountsResponse:
    counts = await aggregator.get_pipeline_stage_counts(tenant_id)
    return StageCountsResponse(
        tenant_id=tenant_id,
        total=sum(counts.values()),
        stages=[
            StageCount(stage=stage, label=stage_label(stage), count=counts[stage.value])
            for stage in PipelineStage
        ],
    )
