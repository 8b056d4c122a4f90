from hotel_booking.models.user import User
from hotel_booking.models.hotel import Hotel
from hotel_booking.models.room import Room
from hotel_booking.models.booking import Booking, BookingStatus

__all__ = ["User", "Hotel", "Room", "Booking", "BookingStatus"]
