import json
import logging
from typing import Any

from fastapi import HTTPException, Request, status

from placegate.core.errors import MissingCredentials, SignatureExpired, SignatureInvalid
from placegate.core.signing import verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"


async def read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed JSON body")
    return {} if body is None else body


async def require_signed_request(request: Request) -> Any:
    """
    Verify x-signature / x-timestamp against the server secret.
    Returns the parsed JSON body the signature was checked against.
    """
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = request.headers.get(TIMESTAMP_HEADER)

    body = await read_json_body(request)
    settings = request.app.state.settings

    try:
        verify_signature(
            request.method,
            request.url.path,
            body,
            timestamp,
            signature,
            settings.server_secret.get_secret_value(),
            max_skew_seconds=settings.signature_max_skew_seconds,
        )
    except MissingCredentials as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail)
    except (SignatureExpired, SignatureInvalid) as exc:
        logger.info("signature_rejected", extra={"reason": exc.reason, "path": request.url.path})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.detail)

    return body
