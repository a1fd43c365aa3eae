from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "ke_user"
    postgres_password: str = "changeme"
    postgres_db: str = "keyword_engine"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def postgres_url_sync(self) -> str:
        """For Alembic migrations (sync driver)."""
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Engine wiring
    storage_backend: str = "postgres"  # "postgres" | "memory"
    scheduler_mode: str = "inline"  # "inline" (asyncio in the API process) | "celery"

    # SERP source (iTunes Search API)
    serp_search_url: str = "https://itunes.apple.com/search"
    serp_lookup_url: str = "https://itunes.apple.com/lookup"
    serp_timeout_seconds: float = 10.0
    serp_page_size: int = 25
    serp_user_agent: str = "Mozilla/5.0 (compatible; KeywordEngine/1.0)"

    # Rate limiting (token bucket per tenant+region)
    rate_limit_requests_per_hour: int = 600
    rate_limit_burst: int = 20  # bucket capacity, never exceeded
    region_cooldown_seconds: float = 300.0
    rate_limit_key_prefix: str = "ke:budget"  # Redis keys, used when SCHEDULER_MODE=celery
    submit_rate_limit: str = "30/minute"  # job submissions per tenant, slowapi syntax

    # Scheduler
    scheduler_max_concurrent_jobs: int = 2
    scheduler_workers_per_job: int = 4
    candidate_max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    max_rate_limited_waits: int = 50
    job_timeout_base_seconds: float = 300.0
    job_timeout_per_candidate_seconds: float = 15.0
    cancel_poll_interval_seconds: float = 2.0

    # Estimation / analysis
    volume_staleness_days: int = 7
    gap_stale_tolerance_days: int = 3
    cluster_min_size: int = 2
    cluster_similarity_threshold: float = 0.3

    # Data retention
    job_retention_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.storage_backend not in ("postgres", "memory"):
        errors.append("STORAGE_BACKEND must be 'postgres' or 'memory'")

    if settings.scheduler_mode not in ("inline", "celery"):
        errors.append("SCHEDULER_MODE must be 'inline' or 'celery'")

    if settings.scheduler_mode == "celery" and settings.storage_backend == "memory":
        errors.append("SCHEDULER_MODE=celery needs a shared store (STORAGE_BACKEND=postgres)")

    if settings.rate_limit_burst < 1 or settings.rate_limit_requests_per_hour < 1:
        errors.append("RATE_LIMIT_BURST and RATE_LIMIT_REQUESTS_PER_HOUR must be positive")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if settings.storage_backend == "memory":
            errors.append("STORAGE_BACKEND=memory is not allowed in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
