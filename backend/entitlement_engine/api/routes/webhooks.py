"""Whop webhook route: secret guard, verification, fast-ack dispatch.

Response contract (the sender retries on anything but 2xx):
- 500 only when the webhook secret is not configured
- 200 for everything else: processed, unknown kind, bad signature,
  malformed body, or an internal failure after verification

Mounted under the /api prefix, so Whop must be pointed at POST /api/webhooks
(the path the previous Next.js deployment served), not a bare /webhooks.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from entitlement_engine.core.exceptions import ConfigurationError, VerificationError
from entitlement_engine.domain.events import to_canonical_event
from entitlement_engine.engine import WebhookEngine
from entitlement_engine.middleware.correlation import get_correlation_id
from entitlement_engine.services.verifier import ensure_webhook_secret

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_engine(request: Request) -> WebhookEngine:
    return request.app.state.engine


@router.post("/webhooks")
async def whop_webhook(request: Request, engine: WebhookEngine = Depends(get_engine)):
    """Verify a Whop delivery, ack immediately, and process it in the background."""
    try:
        ensure_webhook_secret(engine.settings)
        if engine.verifier is None:
            raise ConfigurationError("webhook verifier not initialized")
    except ConfigurationError as e:
        # Fail loudly: the body is not read and nothing is processed.
        logger.error("webhook_secret_missing", detail=str(e))
        return PlainTextResponse("Webhook secret not configured", status_code=500)

    body = await request.body()

    try:
        envelope = engine.verifier.verify(body, request.headers)
    except VerificationError as e:
        logger.warning("webhook_verification_failed", reason=str(e), body_size=len(body))
        return PlainTextResponse("Webhook ignored", status_code=200)

    try:
        event = to_canonical_event(envelope.kind, envelope.payload)
        logger.info(
            "webhook_received",
            raw_kind=envelope.kind,
            event_kind=event.kind.value,
            webhook_id=request.headers.get("webhook-id"),
        )
        engine.dispatcher.dispatch(event, correlation_id=get_correlation_id())
    except Exception:
        logger.exception("webhook_dispatch_failed", raw_kind=envelope.kind)
        return PlainTextResponse("Error processing webhook", status_code=200)

    return PlainTextResponse("OK", status_code=200)
