"""
Holiday database model.

Non-business days that push a period's due date forward.
"""

from sqlalchemy import Column, Integer, String, Date
from rental_backend.app.db.session import Base


class Holiday(Base):
    """Holiday model, shared by every group."""
    __tablename__ = "holidays"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    date = Column(Date, nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False, index=True)

    def __repr__(self):
        return f"<Holiday(date={self.date}, name='{self.name}')>"
