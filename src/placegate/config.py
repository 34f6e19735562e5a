from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from placegate.core.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "local"
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    log_level: str = "INFO"

    # shared HMAC secret for signed requests; checked by validate_for_startup()
    server_secret: SecretStr | None = None
    signature_max_skew_seconds: int = 300

    api_key_ttl_seconds: int = 3600

    database_url: str | None = None
    postgres_host: str = "postgres"
    postgres_port: int = 5432
    postgres_db: str = "placegate"
    postgres_user: str = "placegate"
    postgres_password: str = "placegate"
    store_timeout_seconds: float = 5.0

    rate_limit_backend: Literal["memory", "redis"] = "memory"
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0

    @property
    def postgres_dsn(self) -> str:
        if self.database_url:
            return self.database_url
        # asyncpg DSN
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def validate_for_startup(self) -> None:
        if self.server_secret is None or not self.server_secret.get_secret_value():
            raise ConfigurationError("SERVER_SECRET is not set")
        if self.signature_max_skew_seconds < 0:
            raise ConfigurationError("SIGNATURE_MAX_SKEW_SECONDS must be >= 0")
        if self.api_key_ttl_seconds <= 0:
            raise ConfigurationError("API_KEY_TTL_SECONDS must be > 0")
        if self.rate_limit_requests < 1 or self.rate_limit_window_seconds < 1:
            raise ConfigurationError("rate limit settings must be >= 1")
        if self.store_timeout_seconds <= 0:
            raise ConfigurationError("STORE_TIMEOUT_SECONDS must be > 0")


settings = Settings()  # reads from environment
