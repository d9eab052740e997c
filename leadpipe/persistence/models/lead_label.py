"""Lead label model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from leadpipe.persistence.database import Base


class LeadLabel(Base):
    """Kanban label applied to leads, selected by form status.

    Labels whose ``qualification_status`` is NULL are the ones chosen
    automatically when a compliance result lands.
    """

    __tablename__ = "lead_labels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=True)
    form_status = Column(String(50), nullable=True, index=True)
    qualification_status = Column(String(50), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    leads = relationship("Lead", back_populates="label")

    def __repr__(self) -> str:
        return f"<LeadLabel(id={self.id}, name={self.name}, form_status={self.form_status})>"
