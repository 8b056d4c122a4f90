"""
Room ledger: the inventory authority's idempotent hold protocol.

HOLD LIFECYCLE
==============

A hold is a leased claim on a room keyed by the booking saga's request id:

  acquire-hold   no active hold -> hold(request_id, end_date + grace)
                 active hold by the same request -> granted, unchanged
                 active hold by another request  -> declined, unchanged
  release-hold   hold by the same request -> cleared; anything else -> no-op
  finalize-hold  any hold present -> times_booked + 1, hold cleared;
                 no hold -> no-op

Every operation can be replayed with the same arguments without changing the
outcome, which is what lets the gateway retry blindly.

Why a lease instead of a lock:
  If the orchestrator crashes between acquire and finalize, the hold expires
  on its own at end_date + grace. Nothing has to remember to clean it up,
  although `release_all_for_request` exists for explicit sweeps.

Atomicity:
  Each operation reads the room with SELECT ... FOR UPDATE and writes within
  the caller's transaction, so two sagas racing on one room are serialized
  by the database and at most one request id wins the hold.

Finalize is keyed by room, not by request: it converts whatever hold is
present into a permanent count. A stale finalize from a saga whose hold was
already released can therefore consume a newer saga's hold.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_booking.core.config import get_settings
from hotel_booking.core.context import RequestContext
from hotel_booking.core.exceptions import NotFoundError
from hotel_booking.core.logging import bind_context, get_logger
from hotel_booking.core.metrics import record_hold_operation
from hotel_booking.db.base import as_utc, utcnow
from hotel_booking.models.room import Room

logger = get_logger(__name__)
settings = get_settings()


async def _lock_room(db: AsyncSession, room_id: int) -> Room:
    result = await db.execute(
        select(Room).where(Room.id == room_id).with_for_update()
    )
    room = result.scalar_one_or_none()
    if not room:
        raise NotFoundError(f"Room {room_id} not found")
    return room


def hold_expiry(end_date: datetime) -> datetime:
    return as_utc(end_date) + timedelta(minutes=settings.HOLD_GRACE_PERIOD_MINUTES)


async def acquire_hold(
    db: AsyncSession,
    ctx: RequestContext,
    room_id: int,
    request_id: str,
    end_date: datetime,
    now: Optional[datetime] = None,
) -> bool:
    """
    Grant a hold on the room to `request_id`.
    Returns False when the room is disabled or held by another request.
    """
    now = as_utc(now) if now else utcnow()
    log = bind_context(logger, ctx, room_id=room_id, request_id=request_id)
    room = await _lock_room(db, room_id)

    if not room.available:
        log.warning("room_hold_rejected", reason="room_unavailable")
        record_hold_operation("acquire", "rejected")
        return False

    if room.hold_active_at(now):
        if room.held_by_request == request_id:
            log.info("room_hold_replayed", held_until=as_utc(room.held_until).isoformat())
            record_hold_operation("acquire", "replayed")
            return True

        log.warning(
            "room_hold_rejected",
            reason="held_by_other_request",
            held_by=room.held_by_request,
            held_until=as_utc(room.held_until).isoformat(),
        )
        record_hold_operation("acquire", "rejected")
        return False

    if room.has_hold:
        log.info("room_hold_expired", previous_holder=room.held_by_request)

    room.set_hold(request_id, hold_expiry(end_date))
    await db.flush()

    log.info("room_hold_acquired", held_until=as_utc(room.held_until).isoformat())
    record_hold_operation("acquire", "applied")
    return True


async def release_hold(
    db: AsyncSession,
    ctx: RequestContext,
    room_id: int,
    request_id: str,
) -> None:
    """
    Clear the hold if, and only if, `request_id` owns it.
    A mismatch is logged and ignored: a newer request may hold the room now.
    """
    log = bind_context(logger, ctx, room_id=room_id, request_id=request_id)
    room = await _lock_room(db, room_id)

    if room.held_by_request != request_id:
        log.warning("room_release_mismatch", held_by=room.held_by_request)
        record_hold_operation("release", "noop")
        return

    room.clear_hold()
    await db.flush()

    log.info("room_hold_released")
    record_hold_operation("release", "applied")


async def finalize_hold(db: AsyncSession, ctx: RequestContext, room_id: int) -> None:
    """
    Turn the room's current hold into a permanent booking count.
    The lease is not checked: an expired but uncleared hold is still finalized.
    """
    log = bind_context(logger, ctx, room_id=room_id)
    room = await _lock_room(db, room_id)

    if not room.has_hold:
        log.info("room_hold_already_finalized")
        record_hold_operation("finalize", "noop")
        return

    previous = room.times_booked
    holder = room.held_by_request
    room.times_booked = previous + 1
    room.clear_hold()
    await db.flush()

    log.info(
        "room_hold_finalized",
        request_id=holder,
        times_booked_before=previous,
        times_booked=room.times_booked,
    )
    record_hold_operation("finalize", "applied")


async def release_all_for_request(
    db: AsyncSession,
    ctx: RequestContext,
    request_id: str,
) -> int:
    """Sweep: clear every hold owned by `request_id`. Returns how many were cleared."""
    log = bind_context(logger, ctx, request_id=request_id)
    result = await db.execute(
        select(Room)
        .where(Room.held_by_request == request_id)
        .order_by(Room.id.asc())
        .with_for_update()
    )
    rooms = list(result.scalars().all())

    for room in rooms:
        room.clear_hold()
    await db.flush()

    log.info("room_holds_swept", released=len(rooms), room_ids=[room.id for room in rooms])
    for _ in rooms:
        record_hold_operation("release", "applied")
    return len(rooms)


async def list_available_rooms(
    db: AsyncSession,
    exclude_held: bool = False,
    now: Optional[datetime] = None,
) -> list[Room]:
    """Rooms flagged available, optionally without an active hold."""
    query = select(Room).where(Room.available.is_(True))

    if exclude_held:
        now = as_utc(now) if now else utcnow()
        query = query.where((Room.held_until.is_(None)) | (Room.held_until <= now))

    result = await db.execute(query.order_by(Room.id.asc()))
    return list(result.scalars().all())


async def list_rooms_by_popularity(db: AsyncSession) -> list[Room]:
    """
    Available rooms, least booked first, ties broken by id.
    Uses the ix_rooms_available_popularity index.
    """
    result = await db.execute(
        select(Room)
        .where(Room.available.is_(True))
        .order_by(Room.times_booked.asc(), Room.id.asc())
    )
    return list(result.scalars().all())
