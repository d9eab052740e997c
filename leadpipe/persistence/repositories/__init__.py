"""Repository implementations."""

from leadpipe.persistence.repositories.base import BaseRepository
from leadpipe.persistence.repositories.lead_label_repository import LeadLabelRepository
from leadpipe.persistence.repositories.lead_repository import LeadRepository

__all__ = [
    "BaseRepository",
    "LeadRepository",
    "LeadLabelRepository",
]
