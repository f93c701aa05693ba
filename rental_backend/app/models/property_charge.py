"""
Property Charge database model.

Pass-through charges carried by a property (expensas, municipal tax, ...)
that are copied into every new monthly record of matching contracts.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import ContractType


class PropertyCharge(Base):
    """Property charge model."""
    __tablename__ = "property_charges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    property_id = Column(Integer, nullable=False, index=True)
    service_concept_type_id = Column(Integer, ForeignKey('service_concept_types.id'), nullable=False)

    applies_to = Column(Enum(ContractType), default=ContractType.TENANT, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PropertyCharge(property_id={self.property_id}, type={self.service_concept_type_id}, amount={self.amount})>"
