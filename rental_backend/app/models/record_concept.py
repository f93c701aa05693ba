"""
Record Concept database model.

A single line of a monthly record (rent, punitory, credit, tax, service).
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class RecordConcept(Base):
    """
    Record concept model.

    concept_type holds a ConceptKind code for engine-generated lines or the
    catalogue name for ad-hoc ones. Amounts are signed: A_FAVOR and
    subtractive categories are stored negative.
    """
    __tablename__ = "record_concepts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    monthly_record_id = Column(Integer, ForeignKey('monthly_records.id', ondelete='CASCADE'), nullable=False, index=True)
    service_concept_type_id = Column(Integer, ForeignKey('service_concept_types.id'), nullable=True)

    position = Column(Integer, nullable=False, default=0)
    concept_type = Column(String(50), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    description = Column(String(255), nullable=True)

    is_automatic = Column(Boolean, default=True, nullable=False)
    is_corrective = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        # One line per catalogue concept type per record; batch double-submits collide here
        UniqueConstraint('monthly_record_id', 'service_concept_type_id', name='uq_record_concepts_record_type'),
    )

    def __repr__(self):
        return f"<RecordConcept(record_id={self.monthly_record_id}, type='{self.concept_type}', amount={self.amount})>"
