"""
Monthly Record database model.

One ledger entry per (contract, month number): the amounts owed for that
period and how much of it has been paid.
"""

from sqlalchemy import (
    Column, Integer, Numeric, ForeignKey, DateTime, Date, Enum, UniqueConstraint
)
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import RecordStatus


class MonthlyRecord(Base):
    """
    Monthly record (period ledger entry) model.

    total_due is the signed sum of the record's concepts. amount_paid is the
    sum of its payment transactions. The unique key makes period creation
    exclusive; version is bumped on every ORM update so stale batch writes fail.
    """
    __tablename__ = "monthly_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True)

    # Period
    month_number = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)  # 1-12
    period_year = Column(Integer, nullable=False)

    # Financials
    total_due = Column(Numeric(14, 2), default=0, nullable=False)
    amount_paid = Column(Numeric(14, 2), default=0, nullable=False)
    status = Column(Enum(RecordStatus), default=RecordStatus.PENDING, nullable=False, index=True)
    full_payment_date = Column(Date, nullable=True)

    # Optimistic locking
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('contract_id', 'month_number', name='uq_monthly_records_contract_month'),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (
            f"<MonthlyRecord(id={self.id}, contract_id={self.contract_id}, month={self.month_number}, "
            f"due={self.total_due}, paid={self.amount_paid}, status='{self.status.value}')>"
        )
