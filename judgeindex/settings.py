import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # CourtListener Configuration
    courtlistener_api_key: str = Field(default="", alias="COURTLISTENER_API_KEY")
    courtlistener_base_url: str = Field(
        default="https://www.courtlistener.com/api/rest/v4",
        alias="COURTLISTENER_BASE_URL",
    )
    courtlistener_timeout: float = Field(default=30.0, alias="COURTLISTENER_TIMEOUT")
    courtlistener_hourly_limit: int = Field(
        default=5000, alias="COURTLISTENER_HOURLY_LIMIT"
    )
    courtlistener_buffer_limit: int = Field(
        default=4500, alias="COURTLISTENER_BUFFER_LIMIT"
    )
    courtlistener_min_interval: float = Field(
        default=0.3, alias="COURTLISTENER_MIN_INTERVAL"
    )
    courtlistener_max_retries: int = Field(default=3, alias="COURTLISTENER_MAX_RETRIES")
    courtlistener_backoff_base: float = Field(
        default=1.0, alias="COURTLISTENER_BACKOFF_BASE"
    )
    courtlistener_backoff_cap: float = Field(
        default=30.0, alias="COURTLISTENER_BACKOFF_CAP"
    )
    rate_limit_backend: str = Field(default="database", alias="RATE_LIMIT_BACKEND")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_cooldown_seconds: float = Field(default=60.0, alias="CIRCUIT_COOLDOWN")
    circuit_max_cooldown_seconds: float = Field(
        default=900.0, alias="CIRCUIT_MAX_COOLDOWN"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./judgeindex.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Sync Configuration
    sync_jurisdiction: str = Field(default="S", alias="SYNC_JURISDICTION")
    sync_max_entities: int = Field(default=50, alias="SYNC_MAX_ENTITIES")
    sync_max_new_entities: int = Field(default=25, alias="SYNC_MAX_NEW_ENTITIES")
    sync_workers: int = Field(default=4, alias="SYNC_WORKERS")
    sync_max_pages: int = Field(default=5, alias="SYNC_MAX_PAGES")
    sync_cron: str = Field(default="0 3 * * sun", alias="SYNC_CRON")

    # Analytics Configuration
    analytics_lookback_years: int = Field(
        default=5, alias="JUDGE_ANALYTICS_LOOKBACK_YEARS"
    )
    analytics_case_limit: int = Field(default=1000, alias="JUDGE_ANALYTICS_CASE_LIMIT")
    analytics_ready_threshold: int = Field(
        default=500, alias="ANALYTICS_READY_THRESHOLD"
    )
    augmentation_min_cases: int = Field(default=500, alias="AUGMENTATION_MIN_CASES")
    augmentation_timeout: float = Field(default=45.0, alias="AUGMENTATION_TIMEOUT")
    analytics_views_cron: str = Field(default="30 2 * * *", alias="ANALYTICS_VIEWS_CRON")
    analytics_refresh_interval_minutes: int = Field(
        default=10, alias="ANALYTICS_REFRESH_INTERVAL"
    )

    # Cache Configuration
    cache_memory_ttl_seconds: int = Field(default=900, alias="CACHE_MEMORY_TTL")
    cache_memory_max_size: int = Field(default=1000, alias="CACHE_MEMORY_MAX_SIZE")
    cache_distributed_ttl_seconds: int = Field(
        default=86400, alias="CACHE_DISTRIBUTED_TTL"
    )
    cache_staleness_days: int = Field(default=7, alias="CACHE_STALENESS_DAYS")

    # LLM Configuration
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    max_tokens: int = Field(default=1024, alias="MAX_TOKENS")
    temperature: float = Field(default=0.2, alias="TEMPERATURE")

    # API Server Configuration
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")


global_settings = Settings.model_validate(dict(os.environ))
