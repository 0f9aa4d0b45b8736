# shared/config.py
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process configuration loaded from environment variables.

    Every field maps to the upper-cased variable of the same name
    (``sweep_batch_size`` -> ``SWEEP_BATCH_SIZE``); a ``.env`` file in the
    working directory is read when present. Invalid values fail at startup
    with a pydantic ``ValidationError``.
    """

    # Storage
    database_url: str = "postgresql://localhost:5432/crop_advisory"
    document_store: str = "postgres"  # "postgres" or "memory"

    # Inference and executor hardening
    inference_base_url: str = ""  # empty -> canned mock inference
    inference_api_key: str = ""
    inference_timeout_seconds: float = Field(60.0, gt=0)
    executor_timeout_seconds: float = Field(90.0, gt=0)
    circuit_failure_threshold: int = Field(5, ge=1)
    circuit_recovery_seconds: int = Field(120, ge=0)

    # Retries
    retry_base_delay_seconds: float = Field(1.0, ge=0)
    retry_max_delay_seconds: float = Field(300.0, ge=0)
    default_max_retries: int = Field(3, ge=0)

    # Scheduled work
    enable_scheduler: bool = True
    sweep_interval_seconds: float = Field(60.0, gt=0)
    sweep_batch_size: int = Field(10, ge=1)
    weather_check_interval_seconds: float = Field(3600.0, gt=0)
    weather_check_delay_seconds: float = Field(3600.0, ge=0)

    # Server
    log_level: str = "INFO"
    json_logs: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("document_store", "log_level")
    @classmethod
    def _normalise_choice(cls, value: str, info):
        if info.field_name == "log_level":
            return value.upper()
        value = value.lower()
        if value not in ("postgres", "memory"):
            raise ValueError("DOCUMENT_STORE must be 'postgres' or 'memory'")
        return value


@lru_cache
def get_settings() -> Settings:
    """Cached settings for the uvicorn entry point"""
    return Settings()
