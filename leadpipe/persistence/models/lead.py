"""Lead model."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from leadpipe.persistence.database import Base


class Lead(Base):
    """Lead row updated by compliance reconciliation.

    ``phone_normalized`` and ``cpf_normalized`` hold the same canonical keys
    the aggregator matches on.
    """

    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(100), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    phone_normalized = Column(String(20), nullable=True, index=True)
    cpf_normalized = Column(String(20), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    form_status = Column(String(50), nullable=True, index=True)
    cpf_status = Column(String(50), nullable=True)
    cpf_check_id = Column(String(100), nullable=True)
    cpf_checked_at = Column(DateTime, nullable=True)
    pipeline_status = Column(String(50), nullable=True, index=True)
    label_id = Column(Integer, ForeignKey("lead_labels.id"), nullable=True)
    submission_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    label = relationship("LeadLabel", back_populates="leads")

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, tenant_id={self.tenant_id}, form_status={self.form_status}, pipeline_status={self.pipeline_status})>"
