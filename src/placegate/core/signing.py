"""
Signed-request verification for privileged routes.

A client signs a request by computing

    hex(HMAC-SHA256(secret, METHOD + PATH + BODY_JSON + TIMESTAMP))

and sending it in `x-signature`, with the raw timestamp in `x-timestamp`.
BODY_JSON is the compact JSON form of the request body (`{}` when there is
none) as Python's `json.dumps(body, separators=(",", ":"),
ensure_ascii=False)` writes it. Strings, integers, booleans and key order
come out the same as `JSON.stringify`; floats do not (`1.0` and `1e-07`
here, `1` and `1e-7` in JavaScript), so clients must sign floats in the
Python form. The timestamp must be within `max_skew_seconds` of the server clock,
in either direction.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import math
import re
import time
from datetime import datetime, timezone
from typing import Any

from placegate.core.errors import MissingCredentials, SignatureExpired, SignatureInvalid
from placegate.core.keys import constant_time_equals

MAX_SKEW_SECONDS = 300

# ascii digits only, bounded so int() never sees unicode digits or huge input
EPOCH_SECONDS = re.compile(r"[0-9]{1,12}")


def serialize_body(body: Any) -> str:
    # absent / empty / null bodies all sign as {}
    if body is None or body == "" or body == b"":
        body = {}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def canonical_payload(method: str, path: str, body: Any, timestamp: str) -> str:
    return f"{method}{path}{serialize_body(body)}{timestamp}"


def compute_signature(secret: str, method: str, path: str, body: Any, timestamp: str) -> str:
    payload = canonical_payload(method, path, body, timestamp)
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def parse_timestamp(raw: str) -> int | None:
    """
    Parse an ISO 8601 timestamp or integer epoch seconds into epoch seconds.
    Returns None when the value can't be parsed.
    """
    value = raw.strip()
    if not value:
        return None

    if EPOCH_SECONDS.fullmatch(value):
        return int(value)

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return math.floor(parsed.timestamp())


def verify_signature(
    method: str,
    path: str,
    body: Any,
    timestamp_header: str | None,
    signature_header: str | None,
    secret: str,
    *,
    now: float | None = None,
    max_skew_seconds: int = MAX_SKEW_SECONDS,
) -> None:
    """
    Accept (return None) or reject the request.

    Raises MissingCredentials when a header is absent, SignatureExpired when the
    timestamp is malformed or outside the freshness window, SignatureInvalid
    when the HMAC does not match.
    """
    if not signature_header or not timestamp_header:
        raise MissingCredentials("Unsigned request")

    now_epoch = math.floor(time.time() if now is None else now)
    request_epoch = parse_timestamp(timestamp_header)

    if request_epoch is None:
        raise SignatureExpired("Request expired")
    if abs(now_epoch - request_epoch) > max_skew_seconds:
        raise SignatureExpired("Request expired")

    expected = compute_signature(secret, method, path, body, timestamp_header)
    if not constant_time_equals(expected, signature_header):
        raise SignatureInvalid("Invalid signature")
