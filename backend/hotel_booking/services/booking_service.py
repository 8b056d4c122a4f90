"""
Booking saga orchestrator.

SAGA: hold -> confirm -> finalize, or compensate
================================================

Problem:
  A booking lives in our database, the room lives in the inventory
  authority's. There is no shared transaction, and the network between them
  can drop a request or a response.

Solution:
  1. Persist the booking as PENDING with a request_id (idempotency key).
  2. Ask the inventory authority to hold the room for that request_id.
  3. Branch on the tagged outcome:

       GRANTED   -> CONFIRMED, then finalize the hold (times_booked + 1)
       DECLINED  -> CANCELLED, nothing to undo
       FAILED    -> CANCELLED, then release the hold; the ledger may have
                    granted it before the response was lost

  The status change is committed before the follow-up call is sent, so
  finalize/release failures never change what the caller sees. They are
  retried by the gateway and logged; anything left behind expires with the
  hold's lease or is swept by request_id.

  Step 3 re-reads the booking under FOR UPDATE. If a user cancel landed
  while acquire was in flight, the cancel stands: the saga releases its
  hold instead of finalizing it. Cancel takes the same row lock.

  Every ledger operation is idempotent per request_id, which is what makes
  blind retries and replayed sagas safe. A replay must name the same owner,
  room and stay; a replay of a PENDING booking resumes the saga at step 2.

Unavailability is a business outcome: the caller receives a CANCELLED
booking, not an error.
"""

import time
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_booking.core.context import RequestContext
from hotel_booking.core.exceptions import NoAvailableResourceError, NotFoundError, RequestIdConflictError
from hotel_booking.core.logging import bind_context, get_logger
from hotel_booking.core.metrics import record_compensation_failure, record_saga_outcome
from hotel_booking.db.base import as_utc
from hotel_booking.models.booking import Booking, BookingStatus
from hotel_booking.models.user import User
from hotel_booking.services.interfaces.inventory import GatewayOutcome, InventoryGateway, OutcomeKind

logger = get_logger(__name__)

# Terminal status for each outcome of the acquire step
ACQUIRE_TRANSITIONS = {
    OutcomeKind.GRANTED: BookingStatus.CONFIRMED,
    OutcomeKind.DECLINED: BookingStatus.CANCELLED,
    OutcomeKind.FAILED: BookingStatus.CANCELLED,
}


def resolve_request_id(ctx: RequestContext, request_id: Optional[str] = None) -> str:
    """Explicit id, else the caller's correlation id, else a fresh one."""
    return request_id or ctx.correlation_id or str(uuid.uuid4())


async def _get_active_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    return user


async def _find_by_request_id(db: AsyncSession, request_id: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.request_id == request_id))
    return result.scalar_one_or_none()


async def _lock_booking(db: AsyncSession, booking_id: int) -> Booking:
    """Re-read the booking row under FOR UPDATE, overwriting any stale in-memory state."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _same_request(
    booking: Booking,
    room_id: int,
    start_date: datetime,
    end_date: datetime,
) -> bool:
    return (
        booking.room_id == room_id
        and as_utc(booking.start_date) == as_utc(start_date)
        and as_utc(booking.end_date) == as_utc(end_date)
    )


async def _follow_up(
    gateway: InventoryGateway,
    ctx: RequestContext,
    booking: Booking,
    operation: str,
) -> GatewayOutcome:
    """Run finalize or release after the status is durable. Failures are logged, never raised."""
    if operation == "finalize":
        outcome = await gateway.finalize_hold(ctx, booking.room_id)
    else:
        outcome = await gateway.release_hold(ctx, booking.room_id, booking.request_id)

    if outcome.is_failure:
        bind_context(logger, ctx, booking_id=booking.id).error(
            "booking_follow_up_failed",
            operation=operation,
            room_id=booking.room_id,
            request_id=booking.request_id,
            reason=outcome.reason,
        )
        record_compensation_failure(operation)
    return outcome


async def _run_saga(
    db: AsyncSession,
    gateway: InventoryGateway,
    ctx: RequestContext,
    booking: Booking,
    log,
    started: float,
) -> Booking:
    """Steps 2 and 3 for a committed PENDING booking."""
    outcome = await gateway.acquire_hold(
        ctx,
        booking.room_id,
        booking.request_id,
        as_utc(booking.start_date),
        as_utc(booking.end_date),
    )

    # The row may have moved while acquire was in flight (user cancel, or a
    # concurrent replay of this saga). Decide on the locked, current status.
    booking = await _lock_booking(db, booking.id)
    if booking.is_terminal:
        await db.commit()
        return await _settle_superseded(gateway, ctx, booking, outcome, log, started)

    # Step 3: terminal status, committed before any follow-up call
    booking.transition_to(ACQUIRE_TRANSITIONS[outcome.kind])
    await db.flush()
    await db.commit()

    if outcome.kind is OutcomeKind.GRANTED:
        log.info("booking_confirmed")
        await _follow_up(gateway, ctx, booking, "finalize")
    elif outcome.kind is OutcomeKind.DECLINED:
        log.warning("booking_cancelled", reason="room_unavailable")
    else:
        log.error("booking_cancelled", reason="inventory_failure", error=outcome.reason)
        await _follow_up(gateway, ctx, booking, "release")

    record_saga_outcome(booking.status, time.perf_counter() - started)
    return booking


async def _settle_superseded(
    gateway: InventoryGateway,
    ctx: RequestContext,
    booking: Booking,
    outcome: GatewayOutcome,
    log,
    started: float,
) -> Booking:
    """
    The booking reached a terminal status without this saga run.

    CANCELLED: the user cancelled mid-flight, so any hold this run may own is
    released and never finalized. CONFIRMED: another run of the same request
    owns the finalize step; nothing to do here.
    """
    if booking.status == BookingStatus.CANCELLED.value:
        log.warning("booking_cancelled_during_saga", acquire_outcome=outcome.kind.value)
        if outcome.kind is not OutcomeKind.DECLINED:
            await _follow_up(gateway, ctx, booking, "release")
    else:
        log.info("booking_settled_by_replay", status=booking.status)

    record_saga_outcome(booking.status, time.perf_counter() - started)
    return booking


async def _replay(
    db: AsyncSession,
    gateway: InventoryGateway,
    ctx: RequestContext,
    existing: Booking,
    user_id: int,
    room_id: int,
    start_date: datetime,
    end_date: datetime,
    log,
    started: float,
) -> Booking:
    """Answer a request_id that already produced a booking."""
    if existing.user_id != user_id:
        raise RequestIdConflictError(existing.request_id)
    if not _same_request(existing, room_id, start_date, end_date):
        raise RequestIdConflictError(
            existing.request_id, "was already used for a different room or stay"
        )

    log = log.bind(booking_id=existing.id)
    if existing.status == BookingStatus.PENDING.value:
        # An earlier run stopped before step 3; acquire is idempotent per request_id
        log.info("booking_saga_resumed")
        return await _run_saga(db, gateway, ctx, existing, log, started)

    log.info("booking_replayed", status=existing.status)
    return existing


async def create_booking(
    db: AsyncSession,
    gateway: InventoryGateway,
    ctx: RequestContext,
    user_id: int,
    room_id: int,
    start_date: datetime,
    end_date: datetime,
    request_id: Optional[str] = None,
) -> Booking:
    """
    Run the booking saga for one room.
    Returns the booking in its terminal state (CONFIRMED or CANCELLED).
    """
    started = time.perf_counter()
    request_id = resolve_request_id(ctx, request_id)
    log = bind_context(logger, ctx, user_id=user_id, room_id=room_id, request_id=request_id)

    await _get_active_user(db, user_id)

    existing = await _find_by_request_id(db, request_id)
    if existing:
        return await _replay(
            db, gateway, ctx, existing, user_id, room_id, start_date, end_date, log, started
        )

    # Step 1: PENDING booking
    booking = Booking(
        user_id=user_id,
        room_id=room_id,
        start_date=start_date,
        end_date=end_date,
        status=BookingStatus.PENDING.value,
        request_id=request_id,
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent retry with the same request_id inserted first
        await db.rollback()
        existing = await _find_by_request_id(db, request_id)
        if existing is None:
            raise
        return await _replay(
            db, gateway, ctx, existing, user_id, room_id, start_date, end_date, log, started
        )
    await db.refresh(booking)
    await db.commit()

    log = log.bind(booking_id=booking.id)
    log.info("booking_pending")

    return await _run_saga(db, gateway, ctx, booking, log, started)


async def create_booking_with_auto_select(
    db: AsyncSession,
    gateway: InventoryGateway,
    ctx: RequestContext,
    user_id: int,
    start_date: datetime,
    end_date: datetime,
    request_id: Optional[str] = None,
) -> Booking:
    """
    Book the least-booked available room.

    Two concurrent auto-selects may pick the same room; the hold step decides
    which one gets it.
    """
    rooms = await gateway.list_available_rooms_by_popularity(ctx)
    if not rooms:
        bind_context(logger, ctx, user_id=user_id).warning("auto_select_no_rooms")
        raise NoAvailableResourceError()

    selected = rooms[0]
    bind_context(logger, ctx, user_id=user_id).info(
        "auto_select_room",
        room_id=selected.id,
        times_booked=selected.times_booked,
        candidates=len(rooms),
    )
    return await create_booking(
        db, gateway, ctx, user_id, selected.id, start_date, end_date, request_id
    )


async def cancel_booking(
    db: AsyncSession,
    gateway: InventoryGateway,
    ctx: RequestContext,
    booking_id: int,
    user_id: int,
) -> Booking:
    """
    Cancel the caller's booking.
    Cancelling an already cancelled booking is a harmless replay.

    The row stays locked until the cancel commits, so a saga finishing
    concurrently sees CANCELLED and releases its own hold.
    """
    log = bind_context(logger, ctx, booking_id=booking_id, user_id=user_id)
    booking = await get_booking_by_id(db, booking_id, user_id, for_update=True)

    if booking.status == BookingStatus.CONFIRMED.value:
        # Usually already cleared by finalize; release is then a no-op
        await _follow_up(gateway, ctx, booking, "release")

    previous = booking.status
    booking.transition_to(BookingStatus.CANCELLED)
    await db.flush()
    await db.commit()

    log.info("booking_user_cancelled", previous_status=previous, room_id=booking.room_id)
    return booking


async def get_booking_by_id(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    for_update: bool = False,
) -> Booking:
    """A booking that belongs to `user_id`; any other owner's booking is reported as missing."""
    query = select(Booking).where(
        Booking.id == booking_id,
        Booking.user_id == user_id,
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())
