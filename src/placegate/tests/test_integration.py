import json
import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from placegate.config import Settings
from placegate.core.errors import ConfigurationError, StorageFailure
from placegate.core.rate_limit import InMemoryRateLimiter
from placegate.main import create_app
from placegate.tests.helpers import SECRET, signed_headers

pytestmark = pytest.mark.asyncio

HEX64 = re.compile(r"^[0-9a-f]{64}$")


async def generate(client: httpx.AsyncClient, body, **sign_kwargs) -> httpx.Response:
    return await client.post(
        "/generate-api-key",
        content=json.dumps(body),
        headers=signed_headers("POST", "/generate-api-key", body, **sign_kwargs),
    )


async def test_generate_api_key_201(client: httpx.AsyncClient):
    before = datetime.now(timezone.utc)
    r = await generate(client, {"name": "mobile-app"})
    after = datetime.now(timezone.utc)

    assert r.status_code == 201, r.text
    data = r.json()
    assert HEX64.match(data["apiKey"])
    assert "mobile-app" in data["message"]

    expires_at = datetime.fromisoformat(data["expiresAt"])
    assert before + timedelta(hours=1) <= expires_at <= after + timedelta(hours=1)


async def test_generate_api_key_non_ascii_name(client: httpx.AsyncClient):
    r = await generate(client, {"name": "Café Montréal"})
    assert r.status_code == 201, r.text


async def test_generate_api_key_unsigned_400(client: httpx.AsyncClient):
    r = await client.post("/generate-api-key", json={"name": "x"})
    assert r.status_code == 400
    assert r.json()["error"] == "Unsigned request"


async def test_generate_api_key_bad_signature_403(client: httpx.AsyncClient):
    headers = signed_headers("POST", "/generate-api-key", {"name": "x"})
    r = await client.post("/generate-api-key", content=json.dumps({"name": "y"}), headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Invalid signature"


async def test_generate_api_key_wrong_secret_403(client: httpx.AsyncClient):
    r = await generate(client, {"name": "x"}, secret="not-the-secret")
    assert r.status_code == 403


async def test_generate_api_key_stale_timestamp_403(client: httpx.AsyncClient):
    stale = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()
    r = await generate(client, {"name": "x"}, timestamp=stale)
    assert r.status_code == 403
    assert r.json()["error"] == "Request expired"


async def test_generate_api_key_oversized_epoch_timestamp_403(client: httpx.AsyncClient):
    r = await generate(client, {"name": "x"}, timestamp="9" * 5000)
    assert r.status_code == 403
    assert r.json()["error"] == "Request expired"


async def test_generate_api_key_name_too_long_400(client: httpx.AsyncClient):
    r = await generate(client, {"name": "x" * 201})
    assert r.status_code == 400
    assert r.json()["error"] == 'The "name" field must be at most 200 characters'


async def test_generate_api_key_missing_name_400(client: httpx.AsyncClient):
    r = await generate(client, {})
    assert r.status_code == 400
    assert r.json()["error"] == 'The "name" field is required'


async def test_generate_api_key_empty_body_signs_as_empty_object(client: httpx.AsyncClient):
    headers = signed_headers("POST", "/generate-api-key", None)
    r = await client.post("/generate-api-key", headers=headers)
    # signature accepted, then rejected for the missing name
    assert r.status_code == 400
    assert r.json()["error"] == 'The "name" field is required'


async def test_generate_api_key_ignores_query_string_in_signature(client: httpx.AsyncClient):
    body = {"name": "x"}
    r = await client.post(
        "/generate-api-key?debug=1",
        content=json.dumps(body),
        headers=signed_headers("POST", "/generate-api-key", body),
    )
    assert r.status_code == 201, r.text


async def test_generate_api_key_malformed_json_400(client: httpx.AsyncClient):
    headers = signed_headers("POST", "/generate-api-key", None)
    r = await client.post("/generate-api-key", content=b"{not json", headers=headers)
    assert r.status_code == 400


async def test_missing_key_401(client: httpx.AsyncClient):
    r = await client.get("/places")
    assert r.status_code == 401
    assert r.json()["error"] == "Missing API key"


async def test_unknown_key_401(client: httpx.AsyncClient):
    r = await client.get("/places", headers={"x-api-key": "0" * 64})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid API key"


async def test_expired_key_403(client: httpx.AsyncClient, store):
    expired = "e" * 64
    await store.create_api_key(
        key=expired,
        name="old",
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
    r = await client.get("/places", headers={"x-api-key": expired})
    assert r.status_code == 403
    assert r.json()["error"] == "API key expired"


async def test_place_round_trip(client: httpx.AsyncClient, api_key: str):
    headers = {"x-api-key": api_key}

    r = await client.post("/places", json={"latitude": 45.5, "longitude": -73.6}, headers=headers)
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["latitude"] == 45.5
    assert created["longitude"] == -73.6

    r = await client.get("/places", headers=headers)
    assert r.status_code == 200, r.text
    places = r.json()
    assert [(p["id"], p["latitude"], p["longitude"]) for p in places] == [(created["id"], 45.5, -73.6)]


async def test_integer_coordinates_accepted(client: httpx.AsyncClient, api_key: str):
    r = await client.post("/places", json={"latitude": 45, "longitude": -73}, headers={"x-api-key": api_key})
    assert r.status_code == 201, r.text


@pytest.mark.parametrize(
    "body",
    [
        {"latitude": "45.5", "longitude": -73.6},
        {"latitude": 45.5},
        {"latitude": True, "longitude": -73.6},
        {"latitude": None, "longitude": None},
    ],
)
async def test_invalid_place_400(client: httpx.AsyncClient, api_key: str, body):
    r = await client.post("/places", json=body, headers={"x-api-key": api_key})
    assert r.status_code == 400
    assert "error" in r.json()


@pytest.mark.parametrize(
    "raw",
    [
        b'{"latitude": Infinity, "longitude": 1}',
        b'{"latitude": 1, "longitude": -Infinity}',
        b'{"latitude": NaN, "longitude": 1}',
    ],
)
async def test_non_finite_coordinates_400_and_nothing_stored(client: httpx.AsyncClient, api_key: str, raw):
    headers = {"x-api-key": api_key, "content-type": "application/json"}

    r = await client.post("/places", content=raw, headers=headers)
    assert r.status_code == 400, r.text

    r = await client.get("/places", headers=headers)
    assert r.status_code == 200, r.text
    assert r.json() == []


async def test_auth_runs_before_body_validation(client: httpx.AsyncClient):
    r = await client.post("/places", json={"latitude": "nope"})
    assert r.status_code == 401


async def test_repeated_api_key_header_uses_first_value(client: httpx.AsyncClient, api_key: str):
    r = await client.get("/places", headers=[("x-api-key", api_key), ("x-api-key", "0" * 64)])
    assert r.status_code == 200, r.text


async def test_rate_limit_headers(client: httpx.AsyncClient, api_key: str):
    r = await client.get("/places", headers={"x-api-key": api_key})
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == "100"
    assert r.headers["X-RateLimit-Remaining"] == "99"
    assert "X-Request-ID" in r.headers


async def test_rate_limit_429(settings: Settings, store):
    limiter = InMemoryRateLimiter(limit=2, window_seconds=900)
    app = create_app(settings, store=store, rate_limiter=limiter)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        r = await generate(client, {"name": "tiny"})
        headers = {"x-api-key": r.json()["apiKey"]}

        r1 = await client.get("/places", headers=headers)
        r2 = await client.post("/places", json={"latitude": 1.0, "longitude": 2.0}, headers=headers)
        r3 = await client.get("/places", headers=headers)

    assert r1.status_code == 200
    assert r2.status_code == 201
    assert r3.status_code == 429
    assert r3.json()["error"] == "Too many requests. Please try again later."
    assert int(r3.headers["Retry-After"]) <= 900
    assert r3.headers["X-RateLimit-Remaining"] == "0"


async def test_unauthenticated_requests_do_not_consume_quota(client: httpx.AsyncClient, limiter, api_key: str):
    for _ in range(3):
        await client.get("/places", headers={"x-api-key": "0" * 64})
    await client.get("/places")

    assert limiter.window_count("") == 0
    assert limiter.window_count("0" * 64) == 0

    await client.get("/places", headers={"x-api-key": api_key})
    assert limiter.window_count(api_key) == 1


async def test_storage_failure_500(settings: Settings, store, monkeypatch):
    app = create_app(settings, store=store, rate_limiter=InMemoryRateLimiter())

    async def broken(*args, **kwargs):
        raise StorageFailure()

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        r = await generate(client, {"name": "app"})
        api_key = r.json()["apiKey"]

        monkeypatch.setattr(store, "list_places", broken)
        r = await client.get("/places", headers={"x-api-key": api_key})
        assert r.status_code == 500

        monkeypatch.setattr(store, "find_api_key", broken)
        r = await client.get("/places", headers={"x-api-key": api_key})
        assert r.status_code == 500
        assert r.json()["error"] == "API key validation failed"

        monkeypatch.setattr(store, "create_api_key", broken)
        r = await generate(client, {"name": "app"})
        assert r.status_code == 500
        assert r.json() == {"error": "API key generation failed"}


async def test_db_probe(client: httpx.AsyncClient):
    r = await client.get("/test-db")
    assert r.status_code == 200
    assert r.json() == {"message": "Database connection OK"}


async def test_db_probe_failure(client: httpx.AsyncClient, store, monkeypatch):
    async def down():
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(store, "ping", down)
    r = await client.get("/test-db")
    assert r.status_code == 500
    assert r.json()["details"] == "connection refused"


async def test_request_id_is_echoed(client: httpx.AsyncClient):
    r = await client.get("/test-db", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


async def test_missing_secret_fails_at_startup(store):
    with pytest.raises(ConfigurationError):
        create_app(Settings(_env_file=None, server_secret=None), store=store)

    with pytest.raises(ConfigurationError):
        create_app(Settings(_env_file=None, server_secret=""), store=store)


async def test_secret_is_read_from_environment(monkeypatch, store):
    monkeypatch.setenv("SERVER_SECRET", SECRET)
    app = create_app(Settings(_env_file=None), store=store, rate_limiter=InMemoryRateLimiter())
    assert app.state.settings.server_secret.get_secret_value() == SECRET
