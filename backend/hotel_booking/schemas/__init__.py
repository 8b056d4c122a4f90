from hotel_booking.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from hotel_booking.schemas.room import RoomResponse, HoldRequest, HoldResponse, ReleaseAllResponse

__all__ = [
    "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "RoomResponse", "HoldRequest", "HoldResponse", "ReleaseAllResponse",
]
