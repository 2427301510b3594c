from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised runtime configuration for the Swappy media API."""

    model_config = SettingsConfigDict(
        env_prefix="SWAPPY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Swappy Media API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")
    log_format: Literal["json", "console"] = Field(default="json", description="structlog renderer.")

    storage_root: Path = Field(default_factory=lambda: Path("uploads"), description="Root of the blob store.")
    catalog_path: Optional[Path] = Field(
        default=None,
        description="Optional JSON snapshot of the catalog; the catalog is memory-only when unset.",
    )
    catalog_flush_interval_s: float = Field(
        default=0.25,
        ge=0,
        description="Delay used to coalesce catalog changes into one snapshot write.",
    )

    max_upload_size_bytes: int = Field(default=500 * 1024 * 1024, description="Hard limit for uploads.")

    job_queue_backend: Literal["pool", "immediate", "inline"] = Field(
        default="pool",
        description="Backend for derived-asset jobs (inline runs jobs in the caller).",
    )
    job_workers: int = Field(default=4, ge=1, description="Worker tasks servicing the job queue.")
    job_queue_size: int = Field(default=64, ge=1, description="Capacity of the bounded job queue.")
    job_timeout_s: float = Field(default=60.0, gt=0, description="Upper bound for a single derived job.")

    default_sensitivity: float = Field(default=0.5, ge=0.0, le=1.0)
    analysis_window_size: int = Field(default=1024, ge=32, description="FFT window for transient detection.")
    waveform_points: int = Field(default=512, ge=1, description="Resolution of the waveform envelope.")
    thumbnail_timestamp_s: float = Field(default=1.0, ge=0.0, description="Seek position for thumbnails.")
    thumbnail_jpeg_quality: int = Field(default=85, ge=1, le=100)

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "SWAPPY_ENV": "SWAPPY_ENVIRONMENT",
        "SWAPPY_JOB_BACKEND": "SWAPPY_JOB_QUEUE_BACKEND",
        "SWAPPY_UPLOAD_DIR": "SWAPPY_STORAGE_ROOT",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["Settings", "get_settings"]
