"""
Adjustment History database model.

One row per applied adjustment; makes an adjustment to a specific target
period reversible.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Index
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class AdjustmentHistory(Base):
    """
    Adjustment history model.

    At most one active (undone_at IS NULL) row per (contract_id, target_month),
    enforced by a partial unique index so racing applies cannot both succeed.
    """
    __tablename__ = "adjustment_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True)

    # Target period (contract month and its calendar month/year)
    target_month = Column(Integer, nullable=False)
    target_period_month = Column(Integer, nullable=False)
    target_period_year = Column(Integer, nullable=False)

    # Financials
    previous_base_rent = Column(Numeric(14, 2), nullable=False)
    new_base_rent = Column(Numeric(14, 2), nullable=False)
    percentage_applied = Column(Numeric(9, 4), nullable=False)

    # Lifecycle
    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    undone_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ux_adjustment_history_active', 'contract_id', 'target_month', unique=True,
              postgresql_where=Column('undone_at').is_(None),
              sqlite_where=Column('undone_at').is_(None)),
    )

    def __repr__(self):
        return f"<AdjustmentHistory(contract_id={self.contract_id}, month={self.target_month}, active={self.undone_at is None})>"
