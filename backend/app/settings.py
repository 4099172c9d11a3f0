from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "competitor-intel"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "COMPETITOR_INTEL_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/competitor_intel",
        validation_alias=AliasChoices("DATABASE_URL", "COMPETITOR_INTEL_DATABASE_URL"),
    )
    apify_token: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TOKEN", "APIFY_API_TOKEN", "COMPETITOR_INTEL_APIFY_TOKEN"))
    apify_base_url: str = Field(default="https://api.apify.com/v2", validation_alias=AliasChoices("APIFY_BASE_URL", "COMPETITOR_INTEL_APIFY_BASE_URL"))
    apify_timeout_sec: int = Field(default=30, validation_alias=AliasChoices("APIFY_TIMEOUT_SEC", "COMPETITOR_INTEL_APIFY_TIMEOUT_SEC"))
    cron_secret: str | None = Field(default=None, validation_alias=AliasChoices("CRON_SECRET", "COMPETITOR_INTEL_CRON_SECRET"))
    telegram_bot_token: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "COMPETITOR_INTEL_TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_CHAT_ID", "COMPETITOR_INTEL_TELEGRAM_CHAT_ID"))
    due_threshold_hours: int = Field(default=20, validation_alias=AliasChoices("DUE_THRESHOLD_HOURS", "COMPETITOR_INTEL_DUE_THRESHOLD_HOURS"))
    dispatch_max_concurrency: int = Field(default=5, validation_alias=AliasChoices("DISPATCH_MAX_CONCURRENCY", "COMPETITOR_INTEL_DISPATCH_MAX_CONCURRENCY"))
    poll_max_concurrency: int = Field(default=10, validation_alias=AliasChoices("POLL_MAX_CONCURRENCY", "COMPETITOR_INTEL_POLL_MAX_CONCURRENCY"))
    instagram_results_limit: int = Field(default=30, validation_alias=AliasChoices("INSTAGRAM_RESULTS_LIMIT", "COMPETITOR_INTEL_INSTAGRAM_RESULTS_LIMIT"))
    tiktok_results_per_page: int = Field(default=30, validation_alias=AliasChoices("TIKTOK_RESULTS_PER_PAGE", "COMPETITOR_INTEL_TIKTOK_RESULTS_PER_PAGE"))
    youtube_max_results: int = Field(default=50, validation_alias=AliasChoices("YOUTUBE_MAX_RESULTS", "COMPETITOR_INTEL_YOUTUBE_MAX_RESULTS"))
    youtube_max_shorts: int = Field(default=20, validation_alias=AliasChoices("YOUTUBE_MAX_SHORTS", "COMPETITOR_INTEL_YOUTUBE_MAX_SHORTS"))
    scheduler_enabled: bool = Field(default=False, validation_alias=AliasChoices("SCHEDULER_ENABLED", "COMPETITOR_INTEL_SCHEDULER_ENABLED"))
    scheduler_tick_minutes: int = Field(default=15, validation_alias=AliasChoices("SCHEDULER_TICK_MINUTES", "COMPETITOR_INTEL_SCHEDULER_TICK_MINUTES"))
    poll_interval_minutes: int = Field(default=5, validation_alias=AliasChoices("POLL_INTERVAL_MINUTES", "COMPETITOR_INTEL_POLL_INTERVAL_MINUTES"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
