"""
Booking model owned by the reservation authority.

Key design decisions:
- `request_id` is the idempotency key for every inventory call this booking
  triggers; it is unique and never changes once set
- `room_id` is a plain reference: rooms live in the inventory authority's
  storage, so there is no foreign key across that boundary
- Status only moves forward; `transition_to` enforces the allowed moves
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Index

from hotel_booking.core.exceptions import InvalidTransitionError
from hotel_booking.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


# Saga moves PENDING to a terminal state; CONFIRMED -> CANCELLED is the user cancel.
# CANCELLED -> CANCELLED is accepted as an idempotent replay.
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: {BookingStatus.CANCELLED},
}


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(Integer, nullable=False, index=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    request_id = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')",
            name="check_booking_status",
        ),
        CheckConstraint("end_date > start_date", name="check_booking_dates"),
        Index("ix_bookings_user_created", "user_id", "created_at"),
    )

    def transition_to(self, target: BookingStatus) -> None:
        current = BookingStatus(self.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        self.status = target.value

    @property
    def is_terminal(self) -> bool:
        return self.status != BookingStatus.PENDING.value

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, room={self.room_id}, status={self.status})>"
