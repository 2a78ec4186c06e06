from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "politefetch-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    scraper_bearer_token: str | None = None
    scraper_disabled: bool = False
    scheduler_header: str = "X-Vercel-Cron"
    internal_run_header: str = "X-Internal-Run"
    seed_urls: list[str] = [
        "https://quotes.toscrape.com/",
        "https://quotes.toscrape.com/page/2/",
    ]
    allowed_domains: list[str] = ["quotes.toscrape.com", "books.toscrape.com"]
    user_agent: str = "politefetch-bot/1.0 (+contact: crawler-admin@example.com)"
    robots_timeout_seconds: float = 5.0
    robots_cache_ttl_seconds: float = 3600.0
    fetch_timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_base_delay_ms: float = 1000.0
    retry_jitter_ms: float = 1000.0
    rate_limit_base_ms: float = 1500.0
    rate_limit_jitter_ms: float = 500.0
    concurrency: int = 3
    lock_name: str = "scrape"
    lock_ttl_minutes: int = 10
    schedule_interval_seconds: float = 3600.0
    worker_error_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 900.0
    otel_enabled: bool = True
    otel_service_name: str = "politefetch"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="PF_", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
