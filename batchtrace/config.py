from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./batchtrace.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Batch Genealogy Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_TIMEZONE: str = "Europe/London"  # "today" for threshold checks

    # Batch Code Generation
    BATCH_CODE_SEQ_PADDING: int = 3
    BATCH_CODE_MAX_RETRIES: int = 5  # Bounded retries on code collision
    # Default templates per code kind; tenants may override via settings JSON
    BATCH_CODE_FORMATS: dict[str, str] = {
        "raw_material": "RM-{YYYY}-{MMDD}-{SEQ}",
        "production": "PB-{YYYY}-{MMDD}-{SEQ}",
        "finished_product": "FP-{YYYY}-{MMDD}-{SEQ}",
        "byproduct": "BP-{YYYY}-{MMDD}-{SEQ}",
    }

    # Lifecycle Scan Thresholds (days)
    USE_BY_WARNING_DAYS: int = 3
    USE_BY_CRITICAL_DAYS: int = 1
    BEST_BEFORE_WARNING_DAYS: int = 7
    SUPPLIER_DOCUMENT_WARNING_DAYS: int = 30
    RECALL_NOTIFICATION_GRACE_DAYS: int = 3
    RECALL_OVERDUE_WORKING_DAYS: bool = False  # False = calendar days

    # Lifecycle Scan Scheduling
    LIFECYCLE_SCAN_ENABLED: bool = True
    LIFECYCLE_SCAN_CRON_HOUR: int = 5
    LIFECYCLE_SCAN_CRON_MINUTE: int = 0
    LIFECYCLE_SCAN_CONCURRENCY: int = 1  # Rules evaluated in parallel
    TENANT_JOB_MAX_CONCURRENT: int = 5

    @field_validator('BATCH_CODE_FORMATS', mode='before')
    @classmethod
    def parse_batch_code_formats(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
