"""Identity resolver: Whop user id -> internal User row.

Users are created lazily on the first event that references them. Profile
enrichment is best-effort: if the identity service fails, a minimal user
with only external_user_id is created. Creation goes through the ledger's
upsert, so two concurrent first-sight events produce one row.
"""

from typing import Protocol

import structlog

from entitlement_engine.core.exceptions import IdentityLookupError, LedgerWriteError
from entitlement_engine.db.ledger import Ledger
from entitlement_engine.db.models import User
from entitlement_engine.integrations.whop import IdentityProfile

logger = structlog.get_logger(__name__)


class ProfileSource(Protocol):
    async def fetch_profile(self, external_user_id: str) -> IdentityProfile: ...


class IdentityResolver:
    def __init__(self, ledger: Ledger, profiles: ProfileSource):
        self._ledger = ledger
        self._profiles = profiles

    async def lookup(self, external_user_id: str) -> User | None:
        """Existing user or None. Never creates a row."""
        return await self._ledger.get_user_by_external_id(external_user_id)

    async def resolve(self, external_user_id: str) -> User:
        """Return the user for external_user_id, creating it if needed.

        Ledger write failures propagate; profile fetch failures do not, and
        a profile the ledger rejects is dropped in favour of a bare user.
        """
        user = await self._ledger.get_user_by_external_id(external_user_id)
        if user is not None:
            return user

        profile = await self._fetch_profile(external_user_id)
        try:
            user = await self._ledger.upsert_user(
                external_user_id,
                username=profile.username,
                email=profile.email,
            )
        except LedgerWriteError as e:
            if profile == IdentityProfile():
                raise
            # The profile itself may be what the store rejected; retry without it
            logger.warning(
                "identity_resolution_degraded",
                external_user_id=external_user_id,
                reason=f"enriched upsert rejected: {e.reason}",
            )
            profile = IdentityProfile()
            user = await self._ledger.upsert_user(external_user_id)

        logger.info(
            "user_created",
            user_id=str(user.id),
            external_user_id=external_user_id,
            enriched=profile != IdentityProfile(),
        )
        return user

    async def _fetch_profile(self, external_user_id: str) -> IdentityProfile:
        try:
            return await self._profiles.fetch_profile(external_user_id)
        except IdentityLookupError as e:
            logger.warning(
                "identity_resolution_degraded",
                external_user_id=external_user_id,
                reason=e.reason,
            )
        except Exception as e:
            logger.warning(
                "identity_resolution_degraded",
                external_user_id=external_user_id,
                reason=str(e),
                error_type=type(e).__name__,
            )
        return IdentityProfile()
