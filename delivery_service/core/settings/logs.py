"""Logging configuration settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=INFO, LOG_JSON=true, LOG_FILE_PATH=logs/delivery.jsonl
    """

    service_name: str = Field(
        default="delivery-service",
        description="Service name to include in log records (static field in JSON)",
    )
    level: LogLevel = Field(default="INFO", description="Root logger level")
    json_logs: bool = Field(
        default=True,
        alias="LOG_JSON",
        description="Enable JSON Lines (JSONL) formatted structured logs",
    )
    console_enabled: bool = Field(default=True, description="Enable console/stderr logging")
    file_path: Path | None = Field(
        default=None,
        description="Path to log file. None disables file logging.",
    )
    file_max_bytes: int = Field(default=10_485_760, ge=1024, le=1_073_741_824)
    file_backup_count: int = Field(default=5, ge=0, le=100)
    include_context: bool = Field(
        default=True,
        description="Inject tenant/job log context into every record",
    )
    capture_warnings: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Return kwargs suitable for configure_logging(...)."""
        return {
            "service_name": self.service_name,
            "log_level": self.level,
            "json_logs": self.json_logs,
            "console_enabled": self.console_enabled,
            "file_path": str(self.file_path) if self.file_path else None,
            "file_max_bytes": self.file_max_bytes,
            "file_backup_count": self.file_backup_count,
            "include_context": self.include_context,
            "capture_warnings": self.capture_warnings,
        }


__all__ = ["LogLevel", "LoggingSettings"]
