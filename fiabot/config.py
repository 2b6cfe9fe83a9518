"""Configuration management for the FIA document bot."""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

DEFAULT_FIA_URL = (
    "https://www.fia.com/documents/championships/"
    "fia-formula-one-world-championship-14/season/season-2025-2071"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Document source
    fia_url: str = Field(default=DEFAULT_FIA_URL)
    scrape_interval: int = Field(default=30)  # seconds between poll cycles
    documents_to_fetch: int = Field(default=8)
    max_workers: int = Field(default=5)
    temp_dir: str = Field(default="temp")

    # Database (Postgres dedup ledger)
    db_host: Optional[str] = Field(default=None)
    db_port: int = Field(default=5432)
    db_user: Optional[str] = Field(default=None)
    db_password: Optional[str] = Field(default=None)
    db_name: Optional[str] = Field(default=None)
    db_ssl_mode: str = Field(default="disable")
    store_retry_short: float = Field(default=5.0)
    store_retry_long: float = Field(default=60.0)

    # Threads
    threads_access_token: Optional[str] = Field(default=None)
    threads_user_id: Optional[str] = Field(default=None)
    threads_client_id: Optional[str] = Field(default=None)
    threads_client_secret: Optional[str] = Field(default=None)
    threads_redirect_uri: Optional[str] = Field(default=None)
    threads_poll_interval: float = Field(default=3.0)
    threads_poll_timeout: float = Field(default=60.0)
    token_refresh_days: int = Field(default=45)
    token_refresh_margin_days: int = Field(default=7)
    post_hashtag: str = Field(default="#F1Threads")

    # Gemini summaries
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_model: str = Field(default="gemini-2.0-flash")
    summary_timeout: float = Field(default=120.0)

    # Image host and link shortener
    picsur_api: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PICSUR_API", "PICSUR_API_KEY"),
    )
    picsur_url: Optional[str] = Field(default=None)
    shortener_api_key: Optional[str] = Field(default=None)
    shortener_url: Optional[str] = Field(default=None)

    # Rendering
    render_dpi: int = Field(default=110)

    # HTTP Client Defaults
    http_timeout_seconds: float = Field(default=30.0)
    http_retries: int = Field(default=3)
    http_backoff: float = Field(default=0.5)

    # Health server
    health_host: str = Field(default="0.0.0.0")
    health_port: int = Field(default=8080)
    enable_debug_endpoints: bool = Field(default=False)
    shutdown_timeout: float = Field(default=60.0)

    # Runtime
    environment: str = Field(default="production")
    version: str = Field(default="unknown")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit logs as JSON lines")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def missing_required(self) -> List[str]:
        """Return the environment keys that are required but unset."""
        required = {
            "DB_HOST": self.db_host,
            "DB_USER": self.db_user,
            "DB_PASSWORD": self.db_password,
            "DB_NAME": self.db_name,
            "THREADS_ACCESS_TOKEN": self.threads_access_token,
            "THREADS_USER_ID": self.threads_user_id,
            "THREADS_CLIENT_ID": self.threads_client_id,
            "THREADS_CLIENT_SECRET": self.threads_client_secret,
            "THREADS_REDIRECT_URI": self.threads_redirect_uri,
            "GEMINI_API_KEY": self.gemini_api_key,
            "PICSUR_API": self.picsur_api,
            "PICSUR_URL": self.picsur_url,
            "SHORTENER_API_KEY": self.shortener_api_key,
            "SHORTENER_URL": self.shortener_url,
        }
        return [key for key, value in required.items() if not value]

    def validate_required(self) -> None:
        """Raise ValueError listing every missing required setting."""
        missing = self.missing_required()
        if missing:
            raise ValueError(
                "Missing required configuration: " + ", ".join(missing)
            )

    def database_dsn_kwargs(self) -> Dict[str, Any]:
        """Connection keyword arguments for psycopg2."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "user": self.db_user,
            "password": self.db_password,
            "dbname": self.db_name,
            "sslmode": self.db_ssl_mode,
        }

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"


# Global settings instance
settings = Settings()
