"""
Property Group database models.

Named, reusable percentage templates for batch distributions.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from rental_backend.app.db.session import Base


class PropertyGroup(Base):
    """Distribution template header."""
    __tablename__ = "property_groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('group_id', 'name', name='uq_property_groups_group_name'),
    )

    def __repr__(self):
        return f"<PropertyGroup(id={self.id}, name='{self.name}')>"


class PropertyGroupItem(Base):
    """One contract's share in a distribution template."""
    __tablename__ = "property_group_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_group_id = Column(Integer, ForeignKey('property_groups.id', ondelete='CASCADE'), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True)
    percentage = Column(Numeric(5, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint('property_group_id', 'contract_id', name='uq_property_group_items_contract'),
    )

    def __repr__(self):
        return f"<PropertyGroupItem(group={self.property_group_id}, contract={self.contract_id}, pct={self.percentage})>"
