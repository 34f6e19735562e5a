import json

import httpx
import pytest

from placegate.config import Settings
from placegate.core.rate_limit import InMemoryRateLimiter
from placegate.core.store import Store
from placegate.main import create_app
from placegate.tests.helpers import SECRET, signed_headers


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        server_secret=SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'placegate.db'}",
        rate_limit_backend="memory",
    )


@pytest.fixture
async def store(settings: Settings):
    s = Store.from_url(settings.postgres_dsn, timeout_seconds=settings.store_timeout_seconds)
    await s.create_schema()
    yield s
    await s.close()


@pytest.fixture
def limiter(settings: Settings) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


@pytest.fixture
def app(settings: Settings, store: Store, limiter: InMemoryRateLimiter):
    return create_app(settings, store=store, rate_limiter=limiter)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
        yield c


@pytest.fixture
async def api_key(client: httpx.AsyncClient) -> str:
    body = {"name": "fixture-app"}
    r = await client.post(
        "/generate-api-key",
        content=json.dumps(body),
        headers=signed_headers("POST", "/generate-api-key", body),
    )
    assert r.status_code == 201, r.text
    return r.json()["apiKey"]
