"""Compliance poller endpoints: manual trigger and state."""

from fastapi import APIRouter

from leadpipe.api.deps import Poller
from leadpipe.workers.compliance_poller import PollerState, PollResult

router = APIRouter()


@router.post("/run", response_model=PollResult, response_model_by_alias=True)
async def run_compliance_poller(poller: Poller) -> PollResult:
    """Run one reconciliation pass now. Skipped if a pass is already running."""
    return await poller.poll_once()


@router.get("/state", response_model=PollerState, response_model_by_alias=True)
async def get_compliance_poller_state(poller: Poller) -> PollerState:
    return poller.get_state()
