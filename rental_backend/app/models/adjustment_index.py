"""
Adjustment Index database model.

Named periodic rent-increase rule shared by many contracts.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class AdjustmentIndex(Base):
    """
    Adjustment index model.

    current_value is the default percentage applied when contracts bound to
    this index reach an adjustment month (every frequency_months periods).
    """
    __tablename__ = "adjustment_indices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    frequency_months = Column(Integer, nullable=False)
    current_value = Column(Numeric(7, 2), default=0, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('group_id', 'name', name='uq_adjustment_indices_group_name'),
    )

    def __repr__(self):
        return f"<AdjustmentIndex(id={self.id}, name='{self.name}', every={self.frequency_months})>"
