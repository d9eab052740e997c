"""SQLAlchemy models."""

from leadpipe.persistence.models.lead import Lead
from leadpipe.persistence.models.lead_label import LeadLabel

__all__ = ["Lead", "LeadLabel"]
