from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ATTENDANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server_url: str = "http://127.0.0.1:3000"
    extractor_url: str = "ws://127.0.0.1:8765"

    # Euclidean distance; a match needs distance < threshold.
    match_threshold: float = Field(default=0.6, gt=0)

    request_timeout_seconds: float = 30.0
    extractor_ready_timeout_seconds: float = 60.0
    extractor_reconnect_seconds: int = 3

    camera_index: int = 0
    jpeg_quality: int = Field(default=50, ge=1, le=100)

    data_dir: Path = BASE_DIR / "data"
    log_dir: Path = BASE_DIR / "logs"
    log_level: str = "INFO"

    @property
    def credentials_db_path(self) -> Path:
        return self.data_dir / "credentials.db"

    @property
    def api_base_url(self) -> str:
        return self.server_url.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
