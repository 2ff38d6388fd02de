"""Correlation IDs for webhook deliveries.

Whop stamps every delivery with a webhook-id header that stays the same
across redeliveries. When the caller sends no X-Request-ID, that delivery id
is promoted to the correlation id, so every log line for a delivery (route
and background worker alike) can be found by the id shown in the Whop
dashboard.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI
from starlette.types import ASGIApp, Receive, Scope, Send

REQUEST_ID_HEADER = b"x-request-id"
DELIVERY_ID_HEADER = b"webhook-id"


class DeliveryIdAsRequestIdMiddleware:
    """Copy webhook-id into X-Request-ID when the request has no X-Request-ID."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            headers = scope.get("headers") or []
            names = {name.lower() for name, _ in headers}
            if REQUEST_ID_HEADER not in names:
                delivery_id = next((v for n, v in headers if n.lower() == DELIVERY_ID_HEADER), None)
                if delivery_id:
                    scope = dict(scope)
                    scope["headers"] = [*headers, (REQUEST_ID_HEADER, delivery_id)]
        await self.app(scope, receive, send)


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add correlation ID handling to the app.

    X-Request-ID is echoed on every response: the caller's value, else the
    Whop delivery id, else a fresh UUID.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        generator=lambda: str(uuid.uuid4()),
        validator=None,  # delivery ids are not UUIDs
        transformer=lambda a: a,
    )
    # Added last so it wraps CorrelationIdMiddleware and runs before it
    app.add_middleware(DeliveryIdAsRequestIdMiddleware)


def get_correlation_id() -> str | None:
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["DeliveryIdAsRequestIdMiddleware", "get_correlation_id", "setup_correlation_middleware"]
