"""
Inventory gateway interface.
The booking saga reaches the room ledger only through this seam.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from hotel_booking.core.context import RequestContext
from hotel_booking.schemas.room import RoomResponse


class OutcomeKind(str, enum.Enum):
    GRANTED = "granted"
    DECLINED = "declined"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GatewayOutcome:
    """
    Tagged result of one gateway call.

    DECLINED is a business answer from the ledger (room held, disabled or
    unknown), FAILED means the call itself did not get a definite answer
    (timeout, transport error, error response after retries).
    """

    kind: OutcomeKind
    reason: Optional[str] = None

    @classmethod
    def granted(cls) -> "GatewayOutcome":
        return cls(OutcomeKind.GRANTED)

    @classmethod
    def declined(cls, reason: Optional[str] = None) -> "GatewayOutcome":
        return cls(OutcomeKind.DECLINED, reason)

    @classmethod
    def completed(cls) -> "GatewayOutcome":
        return cls(OutcomeKind.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> "GatewayOutcome":
        return cls(OutcomeKind.FAILED, reason)

    @property
    def is_failure(self) -> bool:
        return self.kind is OutcomeKind.FAILED


class InventoryGateway(ABC):
    """
    Interface for reaching the inventory authority.

    Implementations:
    - HttpInventoryGateway: request/response over HTTP with timeout and retry
    - LocalInventoryGateway: in-process calls into the room ledger

    Every call carries the request context; implementations must pass the
    same request_id on every retry.
    """

    @abstractmethod
    async def acquire_hold(
        self,
        ctx: RequestContext,
        room_id: int,
        request_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> GatewayOutcome:
        """
        Ask the ledger to hold the room for request_id.

        Returns:
            GRANTED, DECLINED, or FAILED(reason)
        """
        pass

    @abstractmethod
    async def release_hold(self, ctx: RequestContext, room_id: int, request_id: str) -> GatewayOutcome:
        """Release request_id's hold. Returns COMPLETED or FAILED(reason)."""
        pass

    @abstractmethod
    async def finalize_hold(self, ctx: RequestContext, room_id: int) -> GatewayOutcome:
        """Convert the room's hold into a booking count. Returns COMPLETED or FAILED(reason)."""
        pass

    @abstractmethod
    async def list_available_rooms_by_popularity(self, ctx: RequestContext) -> list[RoomResponse]:
        """Available rooms ordered by (times_booked, id). Empty when the call fails."""
        pass

    async def close(self) -> None:
        """Release underlying resources."""
        pass
