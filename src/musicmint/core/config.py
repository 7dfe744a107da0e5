"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # XRP Ledger
    xrpl_url: str = Field(default="wss://xrplcluster.com", alias="XRPL_URL")
    platform_wallet_address: str = Field(default="", alias="PLATFORM_WALLET_ADDRESS")
    platform_wallet_seed: str = Field(default="", alias="PLATFORM_WALLET_SEED")
    transaction_timeout_seconds: float = Field(default=60, alias="TRANSACTION_TIMEOUT_SECONDS")
    account_nfts_page_limit: int = Field(default=400, alias="ACCOUNT_NFTS_PAGE_LIMIT")

    # Mint Worker
    poll_interval_seconds: float = Field(default=5, alias="POLL_INTERVAL_SECONDS")
    mint_delay_seconds: float = Field(default=0.5, alias="MINT_DELAY_SECONDS")
    worker_error_backoff_seconds: float = Field(default=10, alias="WORKER_ERROR_BACKOFF_SECONDS")
    fail_orphaned_jobs_on_startup: bool = Field(default=True, alias="FAIL_ORPHANED_JOBS_ON_STARTUP")
    orphaned_job_stale_seconds: float = Field(default=300, alias="ORPHANED_JOB_STALE_SECONDS")
    run_worker_in_app: bool = Field(default=False, alias="RUN_WORKER_IN_APP")

    # Mint Jobs
    max_units_per_job: int = Field(default=200, alias="MAX_UNITS_PER_JOB")
    default_transfer_fee: int = Field(default=500, alias="DEFAULT_TRANSFER_FEE")
    job_history_days: int = Field(default=7, alias="JOB_HISTORY_DAYS")

    # Reconciliation
    reservation_timeout_minutes: int = Field(default=10, alias="RESERVATION_TIMEOUT_MINUTES")
    admin_secret: str = Field(default="", alias="ADMIN_SECRET")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if the platform wallet is not configured.
        Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.platform_wallet_address:
            missing.append(
                "PLATFORM_WALLET_ADDRESS: Classic address of the account that submits mints"
            )

        if not self.platform_wallet_seed:
            missing.append("PLATFORM_WALLET_SEED: Secret seed of the platform wallet")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
