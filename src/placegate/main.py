import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from placegate.api.health import router as health_router
from placegate.api.keys import router as keys_router
from placegate.api.places import router as places_router
from placegate.config import Settings, settings as env_settings
from placegate.core.authenticator import KeyAuthenticator
from placegate.core.keys import KeyIssuer
from placegate.core.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from placegate.core.request_id import RequestIdMiddleware
from placegate.core.store import Store
from placegate.deps.redis import create_redis
from placegate.logging import setup_logging

logger = logging.getLogger("placegate")


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(
            create_redis(settings),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        # rejected input is not echoed back; it may be NaN/Infinity, which JSON can't carry
        details = [{k: e[k] for k in ("loc", "msg", "type") if k in e} for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_encoder(details)},
        )


def create_app(
    settings: Settings,
    store: Store | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """
    Build the application. Fails with ConfigurationError before anything is
    served when the configuration is unusable (e.g. SERVER_SECRET missing).

    `store` and `rate_limiter` are owned by the app from here on and closed on
    shutdown; they are built from settings when not given.
    """
    settings.validate_for_startup()

    store = store or Store.from_url(settings.postgres_dsn, timeout_seconds=settings.store_timeout_seconds)
    rate_limiter = rate_limiter or build_rate_limiter(settings)

    app = FastAPI(title="Placegate", version="0.1.0")

    app.state.settings = settings
    app.state.store = store
    app.state.rate_limiter = rate_limiter
    app.state.issuer = KeyIssuer(store, ttl_seconds=settings.api_key_ttl_seconds)
    app.state.authenticator = KeyAuthenticator(store)

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        response = await call_next(request)
        logger.info(
            "request_completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
            },
        )
        return response

    # added last so it wraps the logger above and request ids reach its records
    app.add_middleware(RequestIdMiddleware)
    install_error_handlers(app)

    app.include_router(health_router)
    app.include_router(keys_router)
    app.include_router(places_router)

    @app.on_event("shutdown")
    async def shutdown():
        await rate_limiter.close()
        await store.close()

    logger.info(
        "app_configured",
        extra={"env": settings.app_env, "rate_limit_backend": settings.rate_limit_backend},
    )
    return app


def get_app() -> FastAPI:
    setup_logging(env_settings.log_level)
    return create_app(env_settings)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "placegate.main:get_app",
        factory=True,
        host=env_settings.app_host,
        port=env_settings.app_port,
        log_config=None,
    )
