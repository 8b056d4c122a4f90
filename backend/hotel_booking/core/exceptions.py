"""
Error taxonomy.

Client-visible failures are HTTPExceptions so they propagate unchanged from
services to the response. Transport failures between the orchestrator and
the inventory authority never reach the caller; the gateway folds them into
a FAILED outcome.
"""

from typing import Optional

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class NoAvailableResourceError(HTTPException):
    def __init__(self, detail: str = "No available rooms found"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransitionError(HTTPException):
    def __init__(self, current: str, target: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Booking cannot move from {current} to {target}",
        )
        self.current = current
        self.target = target


class RequestIdConflictError(HTTPException):
    def __init__(self, request_id: str, reason: str = "is already used by another booking"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Request id {request_id} {reason}",
        )


class InventoryTransportError(Exception):
    """An inventory call timed out, errored, or exhausted its retries."""

    def __init__(
        self,
        operation: str,
        reason: str,
        attempts: int = 1,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {reason}")
        self.operation = operation
        self.reason = reason
        self.attempts = attempts
        self.status_code = status_code
