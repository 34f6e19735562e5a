from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from placegate.core.errors import MissingName, NameTooLong
from placegate.logging import key_prefix
from placegate.models.api_key import ApiKeyRecord

if TYPE_CHECKING:
    from placegate.core.store import Store

logger = logging.getLogger(__name__)

KEY_BYTES = 32  # 256 bits -> 64 hex chars
DEFAULT_TTL_SECONDS = 3600
MAX_NAME_LENGTH = 200  # api_keys.name column width


def generate_api_key() -> str:
    return secrets.token_hex(KEY_BYTES)


def constant_time_equals(a: str, b: str) -> bool:
    # bytes so non-ascii header values compare instead of raising TypeError
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyIssuer:
    """Creates API key records. Only reachable behind signature verification."""

    def __init__(
        self,
        store: Store,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    async def issue(self, name: object) -> ApiKeyRecord:
        if not isinstance(name, str) or not name.strip():
            raise MissingName()
        if len(name) > MAX_NAME_LENGTH:
            raise NameTooLong()

        key = generate_api_key()
        expires_at = self.clock() + self.ttl

        # StorageFailure propagates as-is; no retry
        record = await self.store.create_api_key(key=key, name=name, expires_at=expires_at)

        logger.info(
            "api_key_issued",
            extra={"name": name, "key_prefix": key_prefix(key), "expires_at": expires_at.isoformat()},
        )
        return record
