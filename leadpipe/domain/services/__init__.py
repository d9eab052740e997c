"""Domain services."""

from leadpipe.domain.services.journey_aggregator import JourneyAggregator
from leadpipe.domain.services.lead_status_service import LeadStatusService
from leadpipe.domain.services.source_fetchers import SourceFetchers

__all__ = ["JourneyAggregator", "LeadStatusService", "SourceFetchers"]
