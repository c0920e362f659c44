"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (refresh locks, worker heartbeats)
    redis_url: str = "redis://localhost:6379/0"

    # Strava OAuth + API
    strava_client_id: str = ""
    strava_client_secret: str = ""
    strava_webhook_verify_token: str = ""
    strava_api_base_url: str = "https://www.strava.com/api/v3"
    strava_oauth_url: str = "https://www.strava.com/oauth/token"
    strava_timeout_seconds: float = 10.0
    token_refresh_buffer_seconds: int = 300  # refresh when within 5 minutes of expiry

    # Blockchain (Base Sepolia USDC)
    rpc_url: str = "https://sepolia.base.org"
    rpc_timeout_seconds: float = 10.0
    chain_id: int = 84532
    usdc_contract_address: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    sponsorship_amount_units: int = 5_000_000  # 5 USDC at 6 decimals

    # Payment monitor
    payment_poll_interval_seconds: float = 10.0
    payment_lookback_blocks: int = 100
    payment_session_timeout_seconds: int = 900
    payment_max_errors: int = 1

    # Webhook event retention
    webhook_event_retention_days: int = 30
    retention_sweep_enabled: bool = False

    # Sentry
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
