import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


AUDIT_FILE_NAME = "ollama-proxy.csv"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ollama_url: str = Field(default="http://localhost:11434", alias="OLLAMA_URL")
    host: str = Field(default="localhost", alias="HOST")
    port: int = Field(default=3001, alias="PORT")
    log_path: str = Field(default="./logs", alias="LOG_PATH")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    log_file_enabled: bool = Field(default=True, alias="LOG_FILE_ENABLED")

    upstream_timeout_ms: int = Field(default=300_000, alias="UPSTREAM_TIMEOUT_MS")
    max_body_size_mb: int = Field(default=50, alias="MAX_BODY_SIZE_MB")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    @property
    def upstream_base(self) -> str:
        return self.ollama_url.rstrip("/")

    @property
    def log_dir(self) -> Path:
        return Path(self.log_path)

    @property
    def audit_file(self) -> Path:
        return self.log_dir / AUDIT_FILE_NAME

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO

    @property
    def max_body_bytes(self) -> int:
        return self.max_body_size_mb * 1024 * 1024

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
