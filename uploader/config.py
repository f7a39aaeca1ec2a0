from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class UploaderConfig(BaseSettings):
    BASE_URL: str = "http://localhost:8080"
    CHUNK_SIZE: int = 128 * 1024  # 128 KB per chunk

    # None retries until the caller cancels; it has to be asked for explicitly
    MAX_RETRIES: Optional[int] = 5
    RETRY_BASE_DELAY: float = 0.5
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_MAX_DELAY: float = 30.0
    TIMEOUT: float = 30.0

    # 1 sends chunks strictly one after another
    MAX_WORKERS: int = 1

    model_config = SettingsConfigDict(
        env_prefix="UPLOADER_",
        case_sensitive=True,
        env_parse_none_str="none",
        extra="ignore",
    )

    @field_validator("CHUNK_SIZE", "MAX_WORKERS")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("MAX_RETRIES")
    @classmethod
    def _non_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("must be >= 0, or None for unlimited")
        return value
