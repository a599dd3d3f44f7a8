from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from project root .env if present
current_file_path = Path(__file__).resolve()
project_root_depth = 2  # Two levels up from content_approval/core/settings.py to project root

if len(current_file_path.parents) <= project_root_depth:
    project_root = Path.cwd()
else:
    project_root = current_file_path.parents[project_root_depth]

ENV_PATH = project_root / ".env"
load_dotenv(ENV_PATH)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=ENV_PATH,
        extra="ignore",
        populate_by_name=True,
    )

    # Approval workflow
    auto_approval_threshold: float = Field(default=0.85, alias="APPROVAL_AUTO_APPROVE_THRESHOLD")
    review_sla_hours: float = Field(default=24.0, alias="APPROVAL_REVIEW_SLA_HOURS")
    bulk_operation_limit: int = Field(default=50, alias="APPROVAL_BULK_OPERATION_LIMIT")
    bulk_max_workers: int = Field(default=8, alias="APPROVAL_BULK_MAX_WORKERS")
    publish_timeout_sec: float = Field(default=10.0, alias="APPROVAL_PUBLISH_TIMEOUT_SEC")
    conflict_retries: int = Field(default=1, alias="APPROVAL_CONFLICT_RETRIES")
    default_page_size: int = Field(default=20, alias="APPROVAL_DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, alias="APPROVAL_MAX_PAGE_SIZE")

    # Persistence
    database_url: str = Field(default="sqlite:///./content_approval.db", alias="DATABASE_URL")

    # Host content store
    content_store_url: str = Field(default="http://localhost:8080", alias="CONTENT_STORE_URL")
    content_store_api_key: Optional[str] = Field(default=None, alias="CONTENT_STORE_API_KEY")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("auto_approval_threshold")
    @classmethod
    def _validate_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("APPROVAL_AUTO_APPROVE_THRESHOLD must be within [0, 1]")
        return value

    @field_validator("review_sla_hours", "publish_timeout_sec")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("value must be positive")
        return value

    @field_validator("bulk_operation_limit", "bulk_max_workers", "default_page_size", "max_page_size")
    @classmethod
    def _validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value

    @field_validator("conflict_retries")
    @classmethod
    def _validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("APPROVAL_CONFLICT_RETRIES cannot be negative")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
