"""
Request correlation context.

A RequestContext is created once per inbound request by the middleware and
handed explicitly to every service call. Outbound inventory calls copy its
correlation id into a header so logs on both sides can be joined.
"""

import uuid
from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    correlation_id: str

    @classmethod
    def new(cls) -> "RequestContext":
        return cls(correlation_id=str(uuid.uuid4()))


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency: the context the middleware attached to this request."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        return RequestContext.new()
    return RequestContext(correlation_id=correlation_id)
