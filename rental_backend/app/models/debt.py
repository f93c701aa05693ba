"""
Debt database models.

A month close turns every unsettled monthly record of the period into a
debt; the debt keeps accruing punitory on its unpaid rent until it is paid.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Date, Enum, UniqueConstraint
)
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import DebtStatus, PaymentMethod


class Debt(Base):
    """
    Debt model.

    The unpaid amounts and accumulated_punitory are frozen at close time;
    payments cover services, then rent, then punitory, and only the rent
    still unpaid accrues punitory.
    closing_punitory is the part of accumulated_punitory accrued up to the
    close that the record does not carry yet; it is charged to the record
    with the first debt payment. current_total is what is still owed as of
    the last payment.
    """
    __tablename__ = "debts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True)
    monthly_record_id = Column(Integer, ForeignKey('monthly_records.id', ondelete='CASCADE'), nullable=False)

    # Period
    period_month = Column(Integer, nullable=False)
    period_year = Column(Integer, nullable=False)

    # Amounts at close
    original_amount = Column(Numeric(14, 2), nullable=False)
    unpaid_services_amount = Column(Numeric(14, 2), default=0, nullable=False)
    unpaid_rent_amount = Column(Numeric(14, 2), nullable=False)
    previous_record_payment = Column(Numeric(14, 2), default=0, nullable=False)
    closing_punitory = Column(Numeric(14, 2), default=0, nullable=False)

    # Running balance
    accumulated_punitory = Column(Numeric(14, 2), default=0, nullable=False)
    current_total = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), default=0, nullable=False)

    # Accrual
    punitory_percent = Column(Numeric(7, 4), nullable=False)
    punitory_start_date = Column(Date, nullable=False)
    last_payment_date = Column(Date, nullable=True)

    status = Column(Enum(DebtStatus), default=DebtStatus.OPEN, nullable=False, index=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('monthly_record_id', name='uq_debts_monthly_record'),
    )

    def __repr__(self):
        return (
            f"<Debt(id={self.id}, contract_id={self.contract_id}, "
            f"period={self.period_month}/{self.period_year}, status='{self.status.value}')>"
        )


class DebtPayment(Base):
    """One payment against a debt; mirrored by a payment transaction on the record."""
    __tablename__ = "debt_payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    debt_id = Column(Integer, ForeignKey('debts.id', ondelete='CASCADE'), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey('payment_transactions.id', ondelete='SET NULL'), nullable=True)

    payment_date = Column(Date, nullable=False)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.EFECTIVO, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    principal_portion = Column(Numeric(14, 2), nullable=False)  # Services and rent
    punitory_portion = Column(Numeric(14, 2), nullable=False)
    punitory_at_payment = Column(Numeric(14, 2), nullable=False)  # Punitory owed when paid
    observations = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DebtPayment(id={self.id}, debt_id={self.debt_id}, amount={self.amount})>"
