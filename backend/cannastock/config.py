from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    app_env: str = Field("dev", alias="APP_ENV")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_name: str = Field("cannastock", alias="DB_NAME")
    db_user: str = Field("cannastock", alias="DB_USER")
    db_password: str = Field("cannastockpass", alias="DB_PASSWORD")
    database_url_override: Optional[str] = Field(None, alias="DATABASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    default_site_id: int = Field(1, alias="DEFAULT_SITE_ID")
    batch_sequence_max: int = Field(9999, alias="BATCH_SEQUENCE_MAX")
    unit_sequence_max: int = Field(99999, alias="UNIT_SEQUENCE_MAX")
    daily_sequence_max: int = Field(99999, alias="DAILY_SEQUENCE_MAX")
    linked_serial_sequence_max: int = Field(999999, alias="LINKED_SERIAL_SEQUENCE_MAX")

    movement_save_max_attempts: int = Field(3, alias="MOVEMENT_SAVE_MAX_ATTEMPTS")
    movement_retry_base_delay_ms: int = Field(100, alias="MOVEMENT_RETRY_BASE_DELAY_MS")
    movement_retry_max_delay_ms: int = Field(2000, alias="MOVEMENT_RETRY_MAX_DELAY_MS")
    movement_slow_threshold_ms: int = Field(500, alias="MOVEMENT_SLOW_THRESHOLD_MS")
    movement_large_batch_threshold: int = Field(50, alias="MOVEMENT_LARGE_BATCH_THRESHOLD")
    soh_slow_threshold_ms: int = Field(200, alias="SOH_SLOW_THRESHOLD_MS")
    expiry_warning_days: int = Field(30, alias="EXPIRY_WARNING_DAYS")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            url = self.database_url_override
            # hosting platforms hand out sync postgres DSNs
            if url.startswith("postgres://"):
                url = "postgresql+asyncpg://" + url[len("postgres://") :]
            elif url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://") :]
            return url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
