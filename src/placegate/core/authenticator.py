from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from placegate.core.errors import KeyExpired, KeyNotFound, MissingCredentials
from placegate.core.keys import utcnow
from placegate.logging import key_prefix
from placegate.models.api_key import ApiKeyRecord

if TYPE_CHECKING:
    from placegate.core.store import Store

logger = logging.getLogger(__name__)


class KeyAuthenticator:
    """
    Validates an API key against the store on every call.

    Results are not cached, so an expiry takes effect on the very next request.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def authenticate(self, api_key: str | None) -> ApiKeyRecord:
        if not api_key:
            raise MissingCredentials("Missing API key")

        # StorageFailure from the store is a server-side fault, not a 401
        record = await self.store.find_api_key(api_key)
        if record is None:
            logger.info("api_key_rejected", extra={"reason": "not_found", "key_prefix": key_prefix(api_key)})
            raise KeyNotFound()

        expires_at = record.expires_at
        if expires_at.tzinfo is None:
            # sqlite hands back naive datetimes
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        if self.clock() > expires_at:
            logger.info("api_key_rejected", extra={"reason": "expired", "key_prefix": key_prefix(api_key)})
            raise KeyExpired()

        return record
