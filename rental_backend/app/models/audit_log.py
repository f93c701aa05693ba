"""
Audit Log Database Model.

Tracks every billing-engine mutation for traceability.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking billing events.

    Events logged:
    - PERIOD_OPENED / CONTRACT_EXPIRED
    - ADJUSTMENT_APPLIED / ADJUSTMENT_UNDONE
    - PAYMENT_RECORDED / PAYMENT_DELETED
    - BATCH_SUBMITTED / TEMPLATE_SAVED / TEMPLATE_DELETED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant scope
    group_id = Column(Integer, index=True, nullable=True)

    # Who performed the action (None for system actions)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
