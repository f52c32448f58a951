"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from library_api.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Library API"
    debug: bool = False
    api_v1_prefix: str = "/api/v1"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./library.db"

    # Security
    secret_key: str = ""
    algorithm: str = "HS256"
    access_token_expire_seconds: int = 900
    refresh_token_expire_hours: int = 720
    refresh_cookie_max_age: int = 2592000  # 30 days
    cookie_domain: str | None = None
    cookie_secure: bool = False

    # Bootstrap admin account (optional)
    admin_email: str | None = None
    admin_password: str | None = None

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Rate Limiting
    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # Event stream
    redis_url: str = "redis://localhost:6379/0"
    notifications_enabled: bool = True
    run_consumer_in_process: bool = True
    book_events_stream: str = "book-events"
    book_events_group: str = "mailing"
    book_events_consumer: str = "mailing-1"
    event_stream_max_len: int = 10000
    event_publish_min_replicas: int = 0
    event_publish_wait_ms: int = 1000
    event_dedup_ttl_seconds: int = 3600

    # Mail relay
    smtp_host: str = "smtp.mail.ru"
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_use_tls: bool = True
    smtp_timeout: int = 10  # seconds
    mail_concurrency: int = 5
    site_url: str = "http://localhost:8080"

    # Search
    search_similarity: float = 0.1

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)

    def validate_required(self) -> None:
        """Fail fast on settings the API cannot run without."""
        if not self.secret_key:
            raise ConfigurationError("SECRET_KEY is not set")
        if self.access_token_expire_seconds <= 0:
            raise ConfigurationError(
                f"ACCESS_TOKEN_EXPIRE_SECONDS must be positive, got {self.access_token_expire_seconds}"
            )
        if self.refresh_token_expire_hours <= 0:
            raise ConfigurationError("REFRESH_TOKEN_EXPIRE_HOURS must be positive")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
