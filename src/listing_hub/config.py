"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LISTING_HUB_",
        extra="ignore",
    )

    # Database
    database_path: str = Field(default="data/listings.db")
    db_pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum number of pooled SQLite connections",
    )
    db_busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="How long a connection waits on a locked database before failing",
    )

    # Reconciliation
    batch_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum raw records reconciled per transaction",
    )
    batch_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound on the duration of one batch transaction",
    )
    min_listing_price: int = Field(
        default=5000,
        ge=0,
        description="Raw records priced at or below this are treated as scrape noise",
    )
    listing_base_url: str = Field(
        default="https://lamudi.com.ph/",
        description="Base URL joined with the scraped urlkey to form the canonical listing URL",
    )
    dedup_match_title: bool = Field(
        default=False,
        description="Also match existing listings by exact title when the URL differs",
    )

    # Anthropic API (optional, needed for AI-generated descriptions)
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Anthropic API key for listing description generation",
    )
    anthropic_model: str = Field(default="claude-sonnet-4-5-20250929")
    ai_backfill_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Properties picked up per description backfill run",
    )
    ai_concurrency: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Descriptions generated in parallel per group",
    )
    ai_group_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Cooldown between description groups (external rate limit)",
    )
    ai_timeout_seconds: float = Field(default=60.0, gt=0)

    # Queue
    queue_delay_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Delay applied to messages submitted over HTTP",
    )
    queue_backoff_schedule: str = Field(
        default="1,5,10",
        description="Comma-separated retry delays in seconds for failed messages",
    )

    # Web API
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # Logging
    log_json: bool = Field(default=False, description="Emit JSON logs instead of console output")

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database."""
        return str(Path(self.database_path).parent)

    def get_backoff_schedule(self) -> tuple[float, ...]:
        """Parse queue_backoff_schedule into retry delays."""
        return tuple(
            float(d.strip()) for d in self.queue_backoff_schedule.split(",") if d.strip()
        )

    def get_cors_origins(self) -> list[str]:
        """Parse cors_origins string into a list of origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
