"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from hotel_booking.db.base import as_utc


class BookingCreate(BaseModel):
    room_id: Optional[int] = Field(default=None, gt=0)
    start_date: datetime
    end_date: datetime
    auto_select: bool = False

    @model_validator(mode="after")
    def check_room_and_dates(self) -> "BookingCreate":
        if as_utc(self.end_date) <= as_utc(self.start_date):
            raise ValueError("end_date must be after start_date")
        if not self.auto_select and self.room_id is None:
            raise ValueError("room_id is required unless auto_select is set")
        return self


class BookingResponse(BaseModel):
    id: int
    user_id: int
    room_id: int
    start_date: datetime
    end_date: datetime
    status: str
    request_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
