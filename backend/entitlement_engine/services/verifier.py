"""Webhook secret guard and signature/envelope verification.

Whop signs deliveries with the Standard Webhooks scheme (webhook-id,
webhook-timestamp and webhook-signature headers, HMAC-SHA256 keyed by the
base64-encoded webhook secret). svix implements that scheme, so verification
is delegated to it.
"""

import base64
import json
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from svix.webhooks import Webhook, WebhookVerificationError

from entitlement_engine.core.config import Settings
from entitlement_engine.core.exceptions import ConfigurationError, VerificationError


class WebhookEnvelope(BaseModel):
    """Parsed body of one delivery: {"type": ..., "data": {...}}."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: str = Field(alias="type", min_length=1)
    payload: dict[str, Any] = Field(alias="data")


def ensure_webhook_secret(settings: Settings) -> str:
    """Return the configured webhook secret or raise ConfigurationError."""
    secret = settings.whop_webhook_secret
    if not secret:
        raise ConfigurationError("WHOP_WEBHOOK_SECRET is not configured")
    return secret


class WebhookVerifier:
    """Verifies signed webhook bodies and parses them into envelopes.

    Build once at startup and share across requests.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ConfigurationError("WHOP_WEBHOOK_SECRET is not configured")
        # Whop hands the raw secret to its SDK base64-encoded; svix expects the same form.
        self._webhook = Webhook(base64.b64encode(secret.encode("utf-8")).decode("ascii"))

    def verify(self, body: bytes, headers: Mapping[str, str]) -> WebhookEnvelope:
        """Verify the signature and parse the body.

        Raises VerificationError on a bad or missing signature, a stale
        timestamp, malformed JSON or a body missing the envelope fields.
        """
        # svix 2.x verify() returns None; it only authenticates the body
        try:
            self._webhook.verify(body, dict(headers))
        except WebhookVerificationError as e:
            raise VerificationError(f"signature verification failed: {e}") from e
        except ValueError as e:
            raise VerificationError(f"malformed body: {e}") from e

        try:
            parsed = json.loads(body)
        except ValueError as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            raise VerificationError(f"malformed body: {e}") from e

        if not isinstance(parsed, dict):
            raise VerificationError("envelope is not a JSON object")

        try:
            return WebhookEnvelope.model_validate(parsed)
        except ValidationError as e:
            raise VerificationError(f"invalid envelope: {e.error_count()} error(s)") from e
