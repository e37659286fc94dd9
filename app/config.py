from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    service_name: str = Field(default="the-app", alias="SERVICE_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=5060, alias="PORT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Mirrors stdout into an append-only file for the log shipper (e.g. /app/logs/app.log).
    log_file: str | None = Field(default=None, alias="LOG_FILE")

    otlp_endpoint: str = Field(default="otel-collector:4317", alias="OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_console_export: bool = Field(default=False, alias="OTEL_CONSOLE_EXPORT")
    trace_queue_size: int = Field(default=2048, alias="TRACE_QUEUE_SIZE")
    trace_export_batch_size: int = Field(default=512, alias="TRACE_EXPORT_BATCH_SIZE")
    trace_export_delay_ms: int = Field(default=5000, alias="TRACE_EXPORT_DELAY_MS")

    @property
    def log_path(self) -> Path | None:
        return Path(self.log_file) if self.log_file else None

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.otlp_endpoint.strip()) or self.otel_console_export


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
