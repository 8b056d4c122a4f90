"""
Pydantic schemas for the inventory authority's room endpoints.
These are also the wire format the HTTP inventory gateway parses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class RoomResponse(BaseModel):
    id: int
    hotel_id: int
    number: str
    available: bool
    times_booked: int
    held_until: Optional[datetime] = None
    held_by_request: Optional[str] = None

    model_config = {"from_attributes": True}


class HoldRequest(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=64)
    start_date: Optional[datetime] = None
    end_date: datetime


class HoldResponse(BaseModel):
    granted: bool


class ReleaseAllResponse(BaseModel):
    request_id: str
    released: int
