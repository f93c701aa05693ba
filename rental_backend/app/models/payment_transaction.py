"""
Payment Transaction database models.

A payment against a monthly record, plus the snapshot of how it was imputed.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, Date, Enum, UniqueConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import PaymentMethod


class PaymentTransaction(Base):
    """
    Payment transaction model.

    A record may hold many transactions; its amount_paid is their sum.
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    monthly_record_id = Column(Integer, ForeignKey('monthly_records.id', ondelete='CASCADE'), nullable=False, index=True)

    payment_date = Column(Date, nullable=False)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.EFECTIVO, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)

    # Punitory computed at payment_date
    punitory_amount = Column(Numeric(14, 2), default=0, nullable=False)
    punitory_days = Column(Integer, default=0, nullable=False)
    punitory_forgiven = Column(Boolean, default=False, nullable=False)

    iva_amount = Column(Numeric(14, 2), nullable=True)
    receipt_number = Column(String(30), nullable=True)
    observations = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('group_id', 'receipt_number', name='uq_payment_transactions_receipt'),
    )

    def __repr__(self):
        return f"<PaymentTransaction(id={self.id}, record_id={self.monthly_record_id}, amount={self.amount})>"


class TransactionConcept(Base):
    """Imputation snapshot line of a payment transaction."""
    __tablename__ = "transaction_concepts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey('payment_transactions.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    concept_type = Column(String(50), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<TransactionConcept(tx={self.transaction_id}, type='{self.concept_type}', amount={self.amount})>"
