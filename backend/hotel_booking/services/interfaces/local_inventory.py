"""
In-process inventory gateway.
Calls the room ledger directly, each call in its own committed unit of work.
"""

from datetime import datetime
from typing import AsyncContextManager, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_booking.core.context import RequestContext
from hotel_booking.core.exceptions import NotFoundError
from hotel_booking.core.logging import bind_context, get_logger
from hotel_booking.core.metrics import record_gateway_call
from hotel_booking.schemas.room import RoomResponse
from hotel_booking.services import room_ledger
from hotel_booking.services.interfaces.inventory import GatewayOutcome, InventoryGateway

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class LocalInventoryGateway(InventoryGateway):
    """
    Gateway for single-process deployments and tests.

    Failures surface the same way as over HTTP: a database error becomes a
    FAILED outcome instead of an exception, and acquiring an unknown room is
    DECLINED.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _run(self, ctx: RequestContext, operation: str, call):
        async with self._session_factory() as db:
            try:
                result = await call(db)
                await db.commit()
                return result
            except NotFoundError as e:
                # Raised before any write, nothing to roll back
                raise _failure(ctx, operation, e.detail, not_found=True) from e
            except SQLAlchemyError as e:
                await db.rollback()
                raise _failure(ctx, operation, str(e)) from e

    async def acquire_hold(
        self,
        ctx: RequestContext,
        room_id: int,
        request_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> GatewayOutcome:
        try:
            granted = await self._run(
                ctx,
                "acquire",
                lambda db: room_ledger.acquire_hold(db, ctx, room_id, request_id, end_date),
            )
        except _LocalCallFailed as e:
            if e.not_found:
                return _finish("acquire", GatewayOutcome.declined(e.reason))
            return _finish("acquire", GatewayOutcome.failed(e.reason))
        return _finish("acquire", GatewayOutcome.granted() if granted else GatewayOutcome.declined())

    async def release_hold(self, ctx: RequestContext, room_id: int, request_id: str) -> GatewayOutcome:
        try:
            await self._run(
                ctx,
                "release",
                lambda db: room_ledger.release_hold(db, ctx, room_id, request_id),
            )
        except _LocalCallFailed as e:
            return _finish("release", GatewayOutcome.failed(e.reason))
        return _finish("release", GatewayOutcome.completed())

    async def finalize_hold(self, ctx: RequestContext, room_id: int) -> GatewayOutcome:
        try:
            await self._run(ctx, "finalize", lambda db: room_ledger.finalize_hold(db, ctx, room_id))
        except _LocalCallFailed as e:
            return _finish("finalize", GatewayOutcome.failed(e.reason))
        return _finish("finalize", GatewayOutcome.completed())

    async def list_available_rooms_by_popularity(self, ctx: RequestContext) -> list[RoomResponse]:
        try:
            rooms = await self._run(ctx, "recommend", room_ledger.list_rooms_by_popularity)
        except _LocalCallFailed:
            record_gateway_call("recommend", "failed")
            return []
        record_gateway_call("recommend", "completed")
        return [RoomResponse.model_validate(room) for room in rooms]


class _LocalCallFailed(Exception):
    def __init__(self, reason: str, not_found: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.not_found = not_found


def _failure(
    ctx: RequestContext,
    operation: str,
    reason: str,
    not_found: bool = False,
) -> _LocalCallFailed:
    log = bind_context(logger, ctx)
    if not_found:
        log.warning("inventory_room_not_found", operation=operation, error=reason)
    else:
        log.error("inventory_call_failed", operation=operation, error=reason)
    return _LocalCallFailed(reason, not_found)


def _finish(operation: str, outcome: GatewayOutcome) -> GatewayOutcome:
    record_gateway_call(operation, outcome.kind.value)
    return outcome
