"""Application settings using Pydantic BaseSettings."""

import re

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_async_database_url(url: str | None = None) -> str:
    """Get database URL converted for asyncpg driver."""
    if url is None:
        url = settings.database_url
    # Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy async
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg doesn't support sslmode, it uses ssl parameter
    if "sslmode=" in url:
        url = re.sub(r'[?&]sslmode=[^&]*', '', url)
        url = url.rstrip('?&')
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Local leads database (Postgres in production, SQLite for dev/tests)
    database_url: str = "sqlite+aiosqlite:///./leadpipe.db"

    # Remote Data API (tenant tables: contacts, forms, compliance, meetings)
    remote_data_url: str = ""
    remote_data_api_key: str = ""
    remote_data_timeout_seconds: float = 10.0

    # Aggregation
    source_fetch_limit: int = 500
    default_tenant_id: str = "default-tenant"  # Disables tenant filtering
    legacy_tenant_id: str = "system"  # Also sees rows without tenant_id

    # Compliance reconciliation poller
    compliance_poll_enabled: bool = True
    compliance_poll_interval_minutes: float = 5
    compliance_poll_batch_size: int = 50
    data_dir: str = "data"

    # Fernet key for encrypted CPFs stored by the compliance provider
    field_encryption_key: str = ""

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
