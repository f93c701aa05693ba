"""
Service Concept Type database model.

Group-scoped catalogue of ad-hoc concepts (services, taxes, discounts).
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base
from rental_backend.app.models.billing_enums import ConceptCategory, SUBTRACTIVE_CATEGORIES


class ServiceConceptType(Base):
    """Service concept type model."""
    __tablename__ = "service_concept_types"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    label = Column(String(100), nullable=False)
    category = Column(Enum(ConceptCategory), default=ConceptCategory.SERVICIO, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('group_id', 'name', name='uq_service_concept_types_group_name'),
    )

    @property
    def is_subtractive(self) -> bool:
        return self.category in SUBTRACTIVE_CATEGORIES

    def __repr__(self):
        return f"<ServiceConceptType(id={self.id}, name='{self.name}', category='{self.category.value}')>"
