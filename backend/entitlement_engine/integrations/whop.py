"""Whop identity API client.

Fetches a user's public profile (username, email) by Whop user id. Used to
enrich the internal user row the first time a webhook references that user.
Built once in the application lifespan and passed to the identity resolver.
"""

from dataclasses import dataclass

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from entitlement_engine.core.exceptions import IdentityLookupError, IdentityServiceUnavailable

logger = structlog.get_logger(__name__)

# Matches the users.username / users.email column length
PROFILE_FIELD_MAX_LENGTH = 255


@dataclass(frozen=True)
class IdentityProfile:
    """Profile fields the ledger stores for a user."""

    username: str | None = None
    email: str | None = None


class WhopIdentityClient:
    """Client for the Whop users API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.whop.com/api/v1",
        timeout: float = 3.0,
        attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        wait: wait_base | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        self._attempts = max(1, attempts)
        self._wait = wait or wait_exponential(multiplier=0.2, min=0.2, max=2)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_profile(self, external_user_id: str) -> IdentityProfile:
        """Fetch username and email for a Whop user.

        Transient failures (network, 429, 5xx) are retried a bounded number of
        times. Raises IdentityLookupError when no profile could be obtained.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(IdentityServiceUnavailable),
            stop=stop_after_attempt(self._attempts),
            wait=self._wait,
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "identity_lookup_retrying",
                external_user_id=external_user_id,
                attempt=rs.attempt_number,
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self._fetch_once(external_user_id)
        raise IdentityLookupError(external_user_id, "no attempts made")  # pragma: no cover

    async def _fetch_once(self, external_user_id: str) -> IdentityProfile:
        try:
            response = await self._client.get(f"/users/{external_user_id}")
        except httpx.TransportError as e:
            raise IdentityServiceUnavailable(external_user_id, f"transport error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise IdentityServiceUnavailable(external_user_id, f"status {response.status_code}")
        if response.status_code != 200:
            raise IdentityLookupError(external_user_id, f"status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityLookupError(external_user_id, "response is not JSON") from e
        if not isinstance(data, dict):
            raise IdentityLookupError(external_user_id, "response is not a JSON object")

        return IdentityProfile(
            username=_profile_field(data.get("username")),
            email=_profile_field(data.get("email")),
        )


def _profile_field(value) -> str | None:
    """Keep non-empty strings that fit the ledger column; drop anything else."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or len(value) > PROFILE_FIELD_MAX_LENGTH:
        return None
    return value
