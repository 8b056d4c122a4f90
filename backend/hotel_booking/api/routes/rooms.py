"""
Room endpoints: the inventory authority.

The hold/release/finalize endpoints are internal; the booking service's
inventory gateway is their only intended caller.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_booking.db.session import get_db
from hotel_booking.schemas.room import HoldRequest, HoldResponse, ReleaseAllResponse, RoomResponse
from hotel_booking.services import room_ledger
from hotel_booking.core.context import RequestContext, get_request_context

router = APIRouter(prefix="/rooms", tags=["Rooms"])


@router.get("/", response_model=list[RoomResponse])
async def list_available_rooms_endpoint(
    exclude_held: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Rooms flagged available; `exclude_held` also drops rooms with an active hold."""
    return await room_ledger.list_available_rooms(db, exclude_held=exclude_held)


@router.get("/recommend", response_model=list[RoomResponse])
async def recommend_rooms_endpoint(db: AsyncSession = Depends(get_db)):
    """Available rooms, least booked first."""
    return await room_ledger.list_rooms_by_popularity(db)


@router.post("/release-all", response_model=ReleaseAllResponse)
async def release_all_endpoint(
    request_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Clear every hold owned by `request_id` (recovery sweep)."""
    released = await room_ledger.release_all_for_request(db, ctx, request_id)
    return ReleaseAllResponse(request_id=request_id, released=released)


@router.post("/{room_id}/hold", response_model=HoldResponse)
async def acquire_hold_endpoint(
    room_id: int,
    hold: HoldRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    granted = await room_ledger.acquire_hold(db, ctx, room_id, hold.request_id, hold.end_date)
    return HoldResponse(granted=granted)


@router.post("/{room_id}/release", status_code=204)
async def release_hold_endpoint(
    room_id: int,
    request_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await room_ledger.release_hold(db, ctx, room_id, request_id)


@router.post("/{room_id}/finalize", status_code=204)
async def finalize_hold_endpoint(
    room_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await room_ledger.finalize_hold(db, ctx, room_id)
