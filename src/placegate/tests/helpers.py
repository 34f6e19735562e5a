from datetime import datetime, timezone

from placegate.core.signing import compute_signature

SECRET = "test-secret"


def signed_headers(method: str, path: str, body, *, secret: str = SECRET, timestamp: str | None = None) -> dict:
    timestamp = timestamp or datetime.now(timezone.utc).isoformat()
    return {
        "x-timestamp": timestamp,
        "x-signature": compute_signature(secret, method, path, body, timestamp),
        "content-type": "application/json",
    }
