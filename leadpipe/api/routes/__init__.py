"""API routes."""

from fastapi import APIRouter

from leadpipe.api.routes import compliance_poller, lead_journeys

api_router = APIRouter()

api_router.include_router(lead_journeys.router, prefix="/tenants", tags=["lead-journeys"])
api_router.include_router(compliance_poller.router, prefix="/compliance-poller", tags=["compliance-poller"])
