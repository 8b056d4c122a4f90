"""
Tests for the booking saga orchestrator against a scripted gateway.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from conftest import requires_postgres

from hotel_booking.core.context import RequestContext
from hotel_booking.core.exceptions import (
    InvalidTransitionError,
    NoAvailableResourceError,
    NotFoundError,
    RequestIdConflictError,
)
from hotel_booking.models import Booking, Room
from hotel_booking.models.booking import BookingStatus
from hotel_booking.schemas.room import RoomResponse
from hotel_booking.services import booking_service
from hotel_booking.services.interfaces.inventory import GatewayOutcome, InventoryGateway
from hotel_booking.services.interfaces.local_inventory import LocalInventoryGateway


class ScriptedGateway(InventoryGateway):
    """Returns preset outcomes and records every call."""

    def __init__(self, acquire=None, release=None, finalize=None, rooms=None):
        self.acquire_outcome = acquire or GatewayOutcome.granted()
        self.release_outcome = release or GatewayOutcome.completed()
        self.finalize_outcome = finalize or GatewayOutcome.completed()
        self.rooms = rooms or []
        self.calls = []

    async def acquire_hold(self, ctx, room_id, request_id, start_date, end_date):
        self.calls.append(("acquire", room_id, request_id, ctx.correlation_id))
        return self.acquire_outcome

    async def release_hold(self, ctx, room_id, request_id):
        self.calls.append(("release", room_id, request_id, ctx.correlation_id))
        return self.release_outcome

    async def finalize_hold(self, ctx, room_id):
        self.calls.append(("finalize", room_id, ctx.correlation_id))
        return self.finalize_outcome

    async def list_available_rooms_by_popularity(self, ctx):
        self.calls.append(("recommend",))
        return self.rooms

    def operations(self):
        return [call[0] for call in self.calls]


def _room(room_id: int, times_booked: int) -> RoomResponse:
    return RoomResponse(id=room_id, hotel_id=1, number=str(room_id), available=True, times_booked=times_booked)


async def _book(db_session, gateway, ctx, user, stay, room_id=7, **kwargs):
    start, end = stay
    return await booking_service.create_booking(
        db_session, gateway, ctx, user.id, room_id, start, end, **kwargs
    )


@pytest.mark.asyncio
async def test_granted_hold_confirms_and_finalizes(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.request_id == ctx.correlation_id
    assert gateway.calls == [
        ("acquire", 7, ctx.correlation_id, ctx.correlation_id),
        ("finalize", 7, ctx.correlation_id),
    ]
    stored = await booking_service.get_booking_by_id(db_session, booking.id, test_user.id)
    assert stored.status == BookingStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_declined_hold_cancels_without_release(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(acquire=GatewayOutcome.declined())

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CANCELLED.value
    assert gateway.operations() == ["acquire"]


@pytest.mark.asyncio
async def test_failed_hold_cancels_and_releases(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(acquire=GatewayOutcome.failed("timeout"))

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CANCELLED.value
    assert gateway.calls[1] == ("release", 7, booking.request_id, ctx.correlation_id)


@pytest.mark.asyncio
async def test_failed_release_is_logged_not_raised(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(
        acquire=GatewayOutcome.failed("timeout"),
        release=GatewayOutcome.failed("connection refused"),
    )

    with capture_logs() as logs:
        booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CANCELLED.value
    failures = [entry for entry in logs if entry["event"] == "booking_follow_up_failed"]
    assert len(failures) == 1
    assert failures[0]["operation"] == "release"
    assert failures[0]["correlation_id"] == ctx.correlation_id


@pytest.mark.asyncio
async def test_failed_finalize_keeps_confirmation(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(finalize=GatewayOutcome.failed("timeout"))

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert gateway.operations() == ["acquire", "finalize"]


@pytest.mark.asyncio
async def test_explicit_request_id_wins_over_correlation(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()

    booking = await _book(db_session, gateway, ctx, test_user, stay, request_id="req-explicit")

    assert booking.request_id == "req-explicit"
    assert gateway.calls[0][2] == "req-explicit"


@pytest.mark.asyncio
async def test_replayed_request_returns_existing_booking(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()

    first = await _book(db_session, gateway, ctx, test_user, stay)
    second = await _book(db_session, gateway, ctx, test_user, stay)

    assert second.id == first.id
    assert gateway.operations() == ["acquire", "finalize"]


@pytest.mark.asyncio
async def test_request_id_of_another_user_conflicts(db_session, ctx, test_user, other_user, stay):
    gateway = ScriptedGateway()
    await _book(db_session, gateway, ctx, test_user, stay)

    with pytest.raises(RequestIdConflictError):
        await _book(db_session, gateway, ctx, other_user, stay)


@pytest.mark.asyncio
async def test_unknown_user(db_session, ctx, stay):
    class Ghost:
        id = 424242

    with pytest.raises(NotFoundError):
        await _book(db_session, ScriptedGateway(), ctx, Ghost, stay)


@pytest.mark.asyncio
async def test_auto_select_takes_first_recommended_room(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(rooms=[_room(11, 3), _room(12, 3), _room(10, 5)])
    start, end = stay

    booking = await booking_service.create_booking_with_auto_select(
        db_session, gateway, ctx, test_user.id, start, end
    )

    assert booking.room_id == 11
    assert booking.status == BookingStatus.CONFIRMED.value
    assert gateway.operations() == ["recommend", "acquire", "finalize"]


@pytest.mark.asyncio
async def test_auto_select_without_rooms(db_session, ctx, test_user, stay):
    start, end = stay

    with pytest.raises(NoAvailableResourceError):
        await booking_service.create_booking_with_auto_select(
            db_session, ScriptedGateway(), ctx, test_user.id, start, end
        )


@pytest.mark.asyncio
async def test_cancel_confirmed_booking_releases_hold(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()
    booking = await _book(db_session, gateway, ctx, test_user, stay)
    cancel_ctx = RequestContext(correlation_id="corr-cancel")

    cancelled = await booking_service.cancel_booking(
        db_session, gateway, cancel_ctx, booking.id, test_user.id
    )

    assert cancelled.status == BookingStatus.CANCELLED.value
    # Release is keyed by the booking's own request id, not the cancel request's
    assert gateway.calls[-1] == ("release", 7, booking.request_id, "corr-cancel")


@pytest.mark.asyncio
async def test_cancel_is_idempotent(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway(acquire=GatewayOutcome.declined())
    booking = await _book(db_session, gateway, ctx, test_user, stay)

    again = await booking_service.cancel_booking(db_session, gateway, ctx, booking.id, test_user.id)

    assert again.status == BookingStatus.CANCELLED.value
    assert gateway.operations() == ["acquire"]


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking(db_session, ctx, test_user, other_user, stay):
    gateway = ScriptedGateway()
    booking = await _book(db_session, gateway, ctx, test_user, stay)

    with pytest.raises(NotFoundError):
        await booking_service.cancel_booking(db_session, gateway, ctx, booking.id, other_user.id)


@pytest.mark.asyncio
async def test_terminal_status_cannot_be_reopened(db_session, ctx, test_user, stay):
    cancelled = await _book(
        db_session, ScriptedGateway(acquire=GatewayOutcome.declined()), ctx, test_user, stay
    )
    confirmed = await _book(
        db_session, ScriptedGateway(), RequestContext("corr-2"), test_user, stay
    )

    with pytest.raises(InvalidTransitionError):
        cancelled.transition_to(BookingStatus.CONFIRMED)
    with pytest.raises(InvalidTransitionError):
        confirmed.transition_to(BookingStatus.PENDING)
    with pytest.raises(InvalidTransitionError):
        cancelled.transition_to(BookingStatus.PENDING)


@pytest.mark.asyncio
async def test_reads_are_scoped_to_owner(db_session, ctx, test_user, other_user, stay):
    gateway = ScriptedGateway()
    mine = await _book(db_session, gateway, ctx, test_user, stay)
    theirs = await _book(db_session, gateway, RequestContext("corr-other"), other_user, stay)

    assert [b.id for b in await booking_service.get_user_bookings(db_session, test_user.id)] == [mine.id]
    with pytest.raises(NotFoundError):
        await booking_service.get_booking_by_id(db_session, theirs.id, test_user.id)


def test_request_id_falls_back_to_new_uuid():
    resolved = booking_service.resolve_request_id(RequestContext(correlation_id=""))

    assert len(resolved) == 36


class CancelDuringAcquire(ScriptedGateway):
    """Grants the hold, but only after the owner cancels the booking from another session."""

    def __init__(self, session_factory, user_id, **kwargs):
        super().__init__(**kwargs)
        self.session_factory = session_factory
        self.user_id = user_id

    async def acquire_hold(self, ctx, room_id, request_id, start_date, end_date):
        outcome = await super().acquire_hold(ctx, room_id, request_id, start_date, end_date)
        async with self.session_factory() as other:
            result = await other.execute(select(Booking).where(Booking.request_id == request_id))
            pending = result.scalar_one()
            await booking_service.cancel_booking(other, self, ctx, pending.id, self.user_id)
        return outcome


async def _stored_status(session_factory, booking_id: int) -> str:
    async with session_factory() as fresh:
        return (await fresh.get(Booking, booking_id)).status


@pytest.mark.asyncio
async def test_cancel_during_acquire_wins(db_session, session_factory, ctx, test_user, stay):
    """A cancel that lands while acquire is in flight stands; the granted hold is released."""
    gateway = CancelDuringAcquire(session_factory, test_user.id)

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CANCELLED.value
    assert await _stored_status(session_factory, booking.id) == BookingStatus.CANCELLED.value
    assert gateway.operations() == ["acquire", "release"]
    assert gateway.calls[-1] == ("release", 7, booking.request_id, ctx.correlation_id)


@pytest.mark.asyncio
async def test_cancel_during_declined_acquire_sends_nothing(
    db_session, session_factory, ctx, test_user, stay
):
    gateway = CancelDuringAcquire(session_factory, test_user.id, acquire=GatewayOutcome.declined())

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.status == BookingStatus.CANCELLED.value
    assert gateway.operations() == ["acquire"]


@pytest.mark.asyncio
async def test_cancel_during_acquire_leaves_room_unbooked(
    db_session, session_factory, ctx, test_user, room, stay
):
    """Against the real ledger: the hold is cleared and the room is not counted."""

    class CancellingLocalGateway(LocalInventoryGateway):
        async def acquire_hold(self, ctx, room_id, request_id, start_date, end_date):
            outcome = await super().acquire_hold(ctx, room_id, request_id, start_date, end_date)
            async with session_factory() as other:
                result = await other.execute(select(Booking).where(Booking.request_id == request_id))
                await booking_service.cancel_booking(
                    other, self, ctx, result.scalar_one().id, test_user.id
                )
            return outcome

    gateway = CancellingLocalGateway(session_factory)

    booking = await _book(db_session, gateway, ctx, test_user, stay, room_id=room.id)

    assert booking.status == BookingStatus.CANCELLED.value
    async with session_factory() as fresh:
        stored = await fresh.get(Room, room.id)
        assert stored.held_by_request is None
        assert stored.times_booked == 0


@pytest.mark.asyncio
async def test_request_id_reused_for_another_room_conflicts(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()
    await _book(db_session, gateway, ctx, test_user, stay, room_id=7)

    with pytest.raises(RequestIdConflictError):
        await _book(db_session, gateway, ctx, test_user, stay, room_id=8)

    assert gateway.operations() == ["acquire", "finalize"]


@pytest.mark.asyncio
async def test_request_id_reused_for_other_dates_conflicts(db_session, ctx, test_user, stay):
    gateway = ScriptedGateway()
    start, end = stay
    await _book(db_session, gateway, ctx, test_user, stay)

    with pytest.raises(RequestIdConflictError):
        await _book(db_session, gateway, ctx, test_user, (start, end + timedelta(days=1)))


@pytest.mark.asyncio
async def test_replayed_pending_booking_resumes_saga(db_session, ctx, test_user, stay):
    """A run that died after step 1 is picked up again by the retry."""
    start, end = stay
    stranded = Booking(
        user_id=test_user.id,
        room_id=7,
        start_date=start,
        end_date=end,
        status=BookingStatus.PENDING.value,
        request_id=ctx.correlation_id,
    )
    db_session.add(stranded)
    await db_session.commit()
    gateway = ScriptedGateway()

    booking = await _book(db_session, gateway, ctx, test_user, stay)

    assert booking.id == stranded.id
    assert booking.status == BookingStatus.CONFIRMED.value
    assert gateway.operations() == ["acquire", "finalize"]
    assert gateway.calls[0][2] == ctx.correlation_id


@pytest.mark.asyncio
async def test_duplicate_insert_falls_back_to_replay(
    db_session, ctx, test_user, stay, monkeypatch
):
    """Two retries both miss the lookup; the one that loses the insert gets the winner's booking."""
    gateway = ScriptedGateway()
    user_id = test_user.id
    first = await _book(db_session, gateway, ctx, test_user, stay)
    first_id = first.id

    lookup = booking_service._find_by_request_id
    lookups = []

    async def lookup_missing_first_time(db, request_id):
        lookups.append(request_id)
        if len(lookups) == 1:
            return None
        return await lookup(db, request_id)

    monkeypatch.setattr(booking_service, "_find_by_request_id", lookup_missing_first_time)
    start, end = stay

    second = await booking_service.create_booking(
        db_session, gateway, ctx, user_id, 7, start, end
    )

    assert second.id == first_id
    assert second.status == BookingStatus.CONFIRMED.value
    assert len(lookups) == 2
    assert gateway.operations() == ["acquire", "finalize"]


@requires_postgres
@pytest.mark.asyncio
async def test_concurrent_retries_create_one_booking(session_factory, test_user, room, stay):
    """Same request id on two sessions at once: one booking, one finalize."""
    user_id, room_id = test_user.id, room.id
    ctx = RequestContext(correlation_id="corr-concurrent")
    gateway = LocalInventoryGateway(session_factory)
    start, end = stay

    async def attempt():
        async with session_factory() as session:
            booking = await booking_service.create_booking(
                session, gateway, ctx, user_id, room_id, start, end
            )
            return booking.id, booking.status

    results = await asyncio.gather(attempt(), attempt())

    assert {booking_id for booking_id, _ in results} == {results[0][0]}
    async with session_factory() as fresh:
        assert (await fresh.get(Room, room_id)).times_booked == 1
