"""
Contract database model.

A contract is one tenancy (or owner obligation) billed over a finite
sequence of monthly periods.
"""

from sqlalchemy import (
    Column, Integer, Numeric, Boolean, Date, DateTime, Enum, ForeignKey, CheckConstraint
)
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import ContractType, ContractStatus


class Contract(Base):
    """
    Contract model.

    current_month is the period cursor (1..duration_months) and only moves
    forward. base_rent is the rent in force at the cursor; initial_rent is
    the rent agreed at registration and never changes.
    """
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Scope
    group_id = Column(Integer, nullable=False, index=True)
    property_id = Column(Integer, nullable=True, index=True)

    contract_type = Column(Enum(ContractType), default=ContractType.TENANT, nullable=False)

    # Term
    start_date = Column(Date, nullable=False)
    duration_months = Column(Integer, nullable=False)
    current_month = Column(Integer, default=1, nullable=False)

    # Rent
    initial_rent = Column(Numeric(14, 2), nullable=True)  # Defaults to base_rent on first adjustment
    base_rent = Column(Numeric(14, 2), default=0, nullable=False)
    adjustment_index_id = Column(Integer, ForeignKey('adjustment_indices.id'), nullable=True, index=True)
    pays_iva = Column(Boolean, default=False, nullable=False)

    # Punitory parameters
    punitory_start_day = Column(Integer, default=10, nullable=False)
    punitory_grace_day = Column(Integer, nullable=True)  # Due day; late only after it
    punitory_percent = Column(Numeric(7, 4), default=0, nullable=False)  # Daily rate, in percent

    # Status
    active = Column(Boolean, default=True, nullable=False, index=True)
    status = Column(Enum(ContractStatus), default=ContractStatus.ACTIVE, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('duration_months >= 1', name='ck_contracts_duration'),
        CheckConstraint('current_month >= 1 AND current_month <= duration_months', name='ck_contracts_current_month'),
        CheckConstraint('punitory_start_day BETWEEN 1 AND 28', name='ck_contracts_punitory_day'),
        CheckConstraint(
            'punitory_grace_day IS NULL OR punitory_grace_day BETWEEN 1 AND 28',
            name='ck_contracts_grace_day',
        ),
    )

    def __repr__(self):
        return f"<Contract(id={self.id}, month={self.current_month}/{self.duration_months}, rent={self.base_rent})>"
