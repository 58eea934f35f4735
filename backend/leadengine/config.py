from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    LEADENGINE_DB_URL: str = "sqlite+aiosqlite:///./leadengine.db"

    # --- Minimal operator auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Listing providers (RapidAPI hosted) ---
    RAPIDAPI_KEY: str | None = None
    REALTY_IN_US_BASE_URL: str = "https://realty-in-us.p.rapidapi.com"
    REALTY_IN_US_HOST: str = "realty-in-us.p.rapidapi.com"
    ZILLOW_BASE_URL: str = "https://zillow56.p.rapidapi.com"
    ZILLOW_HOST: str = "zillow56.p.rapidapi.com"

    # --- Outbound HTTP ---
    HTTP_SEARCH_TIMEOUT_S: float = 30.0
    HTTP_RELAY_TIMEOUT_S: float = 10.0
    HTTP_RATE_LIMIT_BACKOFF_S: float = 5.0  # fixed window after a 429
    HTTP_MAX_ATTEMPTS: int = 4  # per page, 429s and transient errors combined
    HTTP_BACKOFF_BASE_S: float = 0.5  # 5xx / timeouts, exponential, capped at 5s

    # --- Worker pacing ---
    PAGE_DELAY_S: float = 0.5
    ITEM_DELAY_S: float = 0.2
    PAGE_SIZE: int = 200
    MAX_PAGES_PER_UNIT: int = 20
    UNIT_CONCURRENCY: int = 3

    # --- Coordinator ---
    WORKER_COUNT: int = 4
    PROVIDERS: list[str] = ["realty_in_us", "zillow"]

    # --- CRM relay (distressed leads) ---
    CRM_WEBHOOK_URL: str | None = None
    CRM_WEBHOOK_SECRET: str | None = None
    RELAY_DISTRESSED_LEADS: bool = True

    # --- Owner notifications for alerts ---
    NOTIFY_WEBHOOK_URL: str | None = None

    # --- Scheduler tuning ---
    MONITOR_INTERVAL_MINUTES: int = 60
    SCORING_INTERVAL_MINUTES: int = 60
    OFF_MARKET_STALE_DAYS: int = 7

    # --- Alert thresholds ---
    ALERT_HIGH_LEAD_VOLUME: float = 10.0  # leads per day
    ALERT_IMPORT_FAILURE: float = 80.0  # success rate % below this alerts
    ALERT_IMPORT_LOOKBACK_HOURS: int = 24
    ALERT_MARKET_HEAT_CHANGE: float = 20.0  # % swing
    ALERT_LOW_CONVERSION: float = 5.0  # conversion rate %
    ALERT_LOW_CONVERSION_MIN_LEADS: int = 5
    ALERT_TRENDING_SCORE: float = 80.0
    ALERT_TRENDING_TOP_N: int = 3
    ALERT_API_QUOTA_PERCENT: float = 80.0
    API_MONTHLY_QUOTA: int = 10000


settings = Settings()
