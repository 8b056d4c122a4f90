"""
Hotel model. Hotels are managed administratively; rooms reference them.
"""

from sqlalchemy import Column, Integer, String

from hotel_booking.db.base import Base, TimestampMixin


class Hotel(Base, TimestampMixin):
    __tablename__ = "hotels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Hotel(id={self.id}, name={self.name})>"
