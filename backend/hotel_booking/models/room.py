"""
Room model owned by the inventory authority.

Key design decisions:
- `available` is an administrative flag, independent of holds
- `held_until` / `held_by_request` form a leased hold; both are set or both
  are NULL, and a hold is active only while `held_until` is in the future
- `times_booked` only grows, through finalize
- Composite index on (available, times_booked, id) serves the popularity
  ordering used by auto-select
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, CheckConstraint

from hotel_booking.db.base import Base, TimestampMixin, as_utc


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id"), nullable=False, index=True)
    number = Column(String(50), nullable=False)
    available = Column(Boolean, nullable=False, default=True)
    times_booked = Column(Integer, nullable=False, default=0)

    # Leased hold
    held_until = Column(DateTime(timezone=True), nullable=True)
    held_by_request = Column(String(64), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("times_booked >= 0", name="check_times_booked_non_negative"),
        CheckConstraint(
            "(held_until IS NULL) = (held_by_request IS NULL)",
            name="check_hold_fields_together",
        ),
        Index("ix_rooms_available_popularity", "available", "times_booked", "id"),
    )

    @property
    def has_hold(self) -> bool:
        """A hold is present, whether or not its lease has run out."""
        return self.held_until is not None and self.held_by_request is not None

    def hold_active_at(self, now: datetime) -> bool:
        return self.held_until is not None and as_utc(self.held_until) > now

    def set_hold(self, request_id: str, until: datetime) -> None:
        self.held_until = until
        self.held_by_request = request_id

    def clear_hold(self) -> None:
        self.held_until = None
        self.held_by_request = None

    def __repr__(self) -> str:
        return (
            f"<Room(id={self.id}, number={self.number}, available={self.available}, "
            f"held_by={self.held_by_request})>"
        )
