from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Public store for finalized artifacts
    UPLOAD_DIR: str = "uploads"
    # Working files and buffered out-of-order chunks; keep on the same filesystem as UPLOAD_DIR
    WORKING_DIR: str = "temp_chunks"
    ARTIFACT_SUFFIX: str = "_final_video.webm"
    UPLOAD_SERVICE_BASE_URL: str = "http://localhost:8080"

    CHUNK_LOCK_TIMEOUT_SECONDS: float = 30.0
    FINALIZE_WAIT_SECONDS: float = 30.0
    STORAGE_WRITE_RETRIES: int = 2
    MAX_TOTAL_CHUNKS: int = 100_000
    IO_WORKERS: int = 8

    SESSION_IDLE_TIMEOUT_SECONDS: float = 3600.0
    REAPER_INTERVAL_SECONDS: float = 60.0  # 0 disables the reaper

    CORS_ORIGINS: List[str] = ["*"]
    SERVICE_PORT: int = 8080

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
