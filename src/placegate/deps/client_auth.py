import logging
import time

from fastapi import Depends, Header, HTTPException, Request, Response, status

from placegate.core.errors import KeyExpired, KeyNotFound, MissingCredentials, RateExceeded, StorageFailure
from placegate.logging import key_prefix
from placegate.models.api_key import ApiKeyRecord

logger = logging.getLogger(__name__)


async def authenticate_client_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
) -> ApiKeyRecord:
    authenticator = request.app.state.authenticator

    try:
        api_key = await authenticator.authenticate(x_api_key)
    except MissingCredentials as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.detail)
    except KeyNotFound as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.detail)
    except KeyExpired as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.detail)
    except StorageFailure:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key validation failed",
        )

    request.state.api_key = api_key.key
    return api_key


async def require_client_key(
    request: Request,
    response: Response,
    api_key: ApiKeyRecord = Depends(authenticate_client_key),
) -> ApiKeyRecord:
    """API key check followed by the per-key rate limit."""
    limiter = request.app.state.rate_limiter

    # partitioned by the validated key, never by the raw header
    rl = await limiter.allow(api_key.key)

    response.headers["X-RateLimit-Limit"] = str(rl.limit)
    response.headers["X-RateLimit-Remaining"] = str(rl.remaining)
    response.headers["X-RateLimit-Reset"] = str(rl.reset_epoch)

    if not rl.allowed:
        logger.info("rate_limited", extra={"key_prefix": key_prefix(api_key.key), "limit": rl.limit})
        retry_after = max(0, rl.reset_epoch - int(time.time()))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=RateExceeded.detail,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(rl.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(rl.reset_epoch),
            },
        )

    return api_key
