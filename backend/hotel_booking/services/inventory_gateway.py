"""
HTTP inventory gateway.
Implements InventoryGateway against the inventory authority's /rooms API.

Retry policy:
  State-changing calls get INVENTORY_WRITE_TIMEOUT per attempt, reads get
  INVENTORY_READ_TIMEOUT. Transport errors, timeouts and 5xx responses are
  retried with linear backoff; 4xx responses are final.

  Every retry resends the same request_id. Minting a new one would make the
  ledger treat the retry as a competing request and defeat idempotency.

  Acquire gets INVENTORY_ACQUIRE_RETRIES retries. Release and finalize are
  follow-up steps and get INVENTORY_COMPENSATION_RETRIES.

Failure mapping:
  Nothing here raises to the saga. A call that exhausts its retries, or gets
  a final error response, comes back as GatewayOutcome.failed(reason); the
  original error is logged with the correlation id. The one exception is a
  404 on acquire: the room does not exist, which is a DECLINED answer.
"""

import asyncio
from datetime import datetime
from typing import Optional

import httpx

from hotel_booking.core.config import get_settings
from hotel_booking.core.context import RequestContext
from hotel_booking.core.exceptions import InventoryTransportError
from hotel_booking.core.logging import bind_context, get_logger
from hotel_booking.core.metrics import record_gateway_call, record_gateway_retry
from hotel_booking.schemas.room import HoldResponse, RoomResponse
from hotel_booking.services.interfaces.inventory import GatewayOutcome, InventoryGateway

logger = get_logger(__name__)
settings = get_settings()


class HttpInventoryGateway(InventoryGateway):
    """
    Request/response adapter for the room ledger.

    The correlation id travels as a header, never in the body; request_id is
    business payload.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        write_timeout: float = settings.INVENTORY_WRITE_TIMEOUT,
        read_timeout: float = settings.INVENTORY_READ_TIMEOUT,
        acquire_retries: int = settings.INVENTORY_ACQUIRE_RETRIES,
        compensation_retries: int = settings.INVENTORY_COMPENSATION_RETRIES,
        retry_backoff: float = settings.INVENTORY_RETRY_BACKOFF,
        correlation_header: str = settings.CORRELATION_ID_HEADER,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url)
        self._owns_client = client is None
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout
        self.acquire_retries = acquire_retries
        self.compensation_retries = compensation_retries
        self.retry_backoff = retry_backoff
        self.correlation_header = correlation_header

    async def _request(
        self,
        ctx: RequestContext,
        operation: str,
        method: str,
        path: str,
        *,
        retries: int,
        timeout: float,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """
        Send one logical call, retrying up to `retries` extra times.
        Raises InventoryTransportError when no attempt produced a usable response.
        """
        log = bind_context(logger, ctx, operation=operation, path=path)
        headers = {self.correlation_header: ctx.correlation_id}
        attempts = retries + 1
        last_error = "no attempt made"

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=timeout,
                )
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e!r}"
            except httpx.TransportError as e:
                last_error = f"transport error: {e!r}"
            else:
                if response.status_code < 400:
                    return response
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                if response.status_code < 500:
                    raise InventoryTransportError(
                        operation, last_error, attempt, status_code=response.status_code
                    )

            if attempt < attempts:
                log.info("inventory_call_retry", attempt=attempt, error=last_error)
                record_gateway_retry(operation)
                if self.retry_backoff:
                    await asyncio.sleep(self.retry_backoff * attempt)

        raise InventoryTransportError(operation, last_error, attempts)

    def _failed(self, ctx: RequestContext, error: InventoryTransportError) -> GatewayOutcome:
        bind_context(logger, ctx).error(
            "inventory_call_failed",
            operation=error.operation,
            attempts=error.attempts,
            error=error.reason,
        )
        record_gateway_call(error.operation, "failed")
        return GatewayOutcome.failed(str(error))

    async def acquire_hold(
        self,
        ctx: RequestContext,
        room_id: int,
        request_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> GatewayOutcome:
        payload = {
            "request_id": request_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        try:
            response = await self._request(
                ctx,
                "acquire",
                "POST",
                f"/rooms/{room_id}/hold",
                retries=self.acquire_retries,
                timeout=self.write_timeout,
                json=payload,
            )
            granted = HoldResponse.model_validate(response.json()).granted
        except InventoryTransportError as e:
            if e.status_code == 404:
                # Unknown room: a definite answer, nothing was held
                bind_context(logger, ctx).warning(
                    "inventory_room_not_found", operation="acquire", room_id=room_id
                )
                record_gateway_call("acquire", "declined")
                return GatewayOutcome.declined(e.reason)
            return self._failed(ctx, e)
        except ValueError as e:
            # Malformed body: the ledger may or may not have granted the hold
            return self._failed(ctx, InventoryTransportError("acquire", f"invalid response: {e}"))

        outcome = GatewayOutcome.granted() if granted else GatewayOutcome.declined()
        record_gateway_call("acquire", outcome.kind.value)
        return outcome

    async def release_hold(self, ctx: RequestContext, room_id: int, request_id: str) -> GatewayOutcome:
        try:
            await self._request(
                ctx,
                "release",
                "POST",
                f"/rooms/{room_id}/release",
                retries=self.compensation_retries,
                timeout=self.write_timeout,
                params={"request_id": request_id},
            )
        except InventoryTransportError as e:
            return self._failed(ctx, e)

        record_gateway_call("release", "completed")
        return GatewayOutcome.completed()

    async def finalize_hold(self, ctx: RequestContext, room_id: int) -> GatewayOutcome:
        try:
            await self._request(
                ctx,
                "finalize",
                "POST",
                f"/rooms/{room_id}/finalize",
                retries=self.compensation_retries,
                timeout=self.write_timeout,
            )
        except InventoryTransportError as e:
            return self._failed(ctx, e)

        record_gateway_call("finalize", "completed")
        return GatewayOutcome.completed()

    async def list_available_rooms_by_popularity(self, ctx: RequestContext) -> list[RoomResponse]:
        try:
            response = await self._request(
                ctx,
                "recommend",
                "GET",
                "/rooms/recommend",
                retries=self.acquire_retries,
                timeout=self.read_timeout,
            )
            rooms = [RoomResponse.model_validate(item) for item in response.json()]
        except InventoryTransportError as e:
            self._failed(ctx, e)
            return []
        except ValueError as e:
            self._failed(ctx, InventoryTransportError("recommend", f"invalid response: {e}"))
            return []

        record_gateway_call("recommend", "completed")
        return rooms

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
