"""
Booking endpoints: the reservation authority.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_booking.db.session import get_db
from hotel_booking.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from hotel_booking.services.booking_service import (
    cancel_booking,
    create_booking,
    create_booking_with_auto_select,
    get_booking_by_id,
    get_user_bookings,
)
from hotel_booking.services.gateway_factory import get_inventory_gateway
from hotel_booking.services.interfaces.inventory import InventoryGateway
from hotel_booking.core.context import RequestContext, get_request_context
from hotel_booking.core.security import get_current_user_id

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: InventoryGateway = Depends(get_inventory_gateway),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Book a room.

    The room is held in the inventory service under this request's
    correlation id. The response is CONFIRMED when the hold was granted and
    CANCELLED when the room was taken, disabled, or unreachable. With
    `auto_select`, the least-booked available room is chosen.
    """
    if booking_data.auto_select:
        return await create_booking_with_auto_select(
            db, gateway, ctx, user_id, booking_data.start_date, booking_data.end_date
        )
    return await create_booking(
        db,
        gateway,
        ctx,
        user_id,
        booking_data.room_id,
        booking_data.start_date,
        booking_data.end_date,
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user, newest first."""
    return await get_user_bookings(db, user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking_by_id(db, booking_id, user_id)


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: InventoryGateway = Depends(get_inventory_gateway),
    ctx: RequestContext = Depends(get_request_context),
):
    """Cancel a booking and release its room hold if one remains."""
    booking = await cancel_booking(db, gateway, ctx, booking_id, user_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )
