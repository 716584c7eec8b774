"""Configuration from environment variables."""

from datetime import date
from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "budget"
    postgres_password: str = ""
    postgres_db: str = "budget"

    # Redis (per-user sync lock)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    sync_lock_backend: str = "local"  # local or redis
    sync_lock_timeout_seconds: int = 300
    sync_lock_wait_seconds: float = 10.0

    # Plaid API
    plaid_client_id: str = ""
    plaid_secret: str = ""
    plaid_env: str = "sandbox"
    plaid_page_size: int = 500
    plaid_max_records: int = 10000
    plaid_timeout_seconds: float = 30.0

    # Access token encryption
    credential_secret: str = ""
    credential_kdf_iterations: int = 100000

    # Sync
    default_sync_start_date: date = date(2025, 1, 1)

    # Import matching defaults
    match_date_window_days: int = 3
    match_amount_tolerance: Decimal = Decimal("0.01")
    match_similarity_threshold: float = 0.4

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Synchronous database URL for Alembic."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def plaid_base_url(self) -> str:
        """Plaid API host for the configured environment."""
        return PLAID_ENVIRONMENTS.get(self.plaid_env, PLAID_ENVIRONMENTS["sandbox"])

    class Config:
        env_prefix = ""
        case_sensitive = False


PLAID_ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

settings = Settings()
