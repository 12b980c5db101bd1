"""Pipeline configuration from environment."""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import (
    DATABASE_URL,
    DEFAULT_BACKOFF_DELAYS,
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POOL_WIDTH,
    DEFAULT_SUB_SCORE_WEIGHTS,
    DEFAULT_VISION_MODEL,
    DEFAULT_WRITE_THRESHOLD,
    IMAGE_DOWNLOAD_TIMEOUT_SECONDS,
    IMAGE_JPEG_QUALITY,
    IMAGE_MAX_EDGE_PX,
    LOG_DIR,
    MODELS_TABLE_PATH,
    OPENAI_API_KEY,
    PROGRESS_FILE,
    PROMPTS_PATH,
)


class Settings(BaseSettings):
    """Pipeline settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Vision provider
    openai_api_key: str = OPENAI_API_KEY
    vision_model: str = DEFAULT_VISION_MODEL
    models_table_path: str = str(MODELS_TABLE_PATH)
    prompts_path: str = str(PROMPTS_PATH)

    # Storage
    database_url: str = DATABASE_URL
    progress_file: str = PROGRESS_FILE

    # Merge policy
    write_threshold: float = DEFAULT_WRITE_THRESHOLD
    sub_score_weights: Dict[str, float] = dict(DEFAULT_SUB_SCORE_WEIGHTS)

    # Batch execution
    pool_width: int = DEFAULT_POOL_WIDTH
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_delays: List[float] = list(DEFAULT_BACKOFF_DELAYS)
    daily_budget: Optional[float] = None

    # Image preprocessing
    image_max_edge: int = IMAGE_MAX_EDGE_PX
    image_quality: int = IMAGE_JPEG_QUALITY
    image_download_timeout: int = IMAGE_DOWNLOAD_TIMEOUT_SECONDS

    # Logging
    log_dir: str = LOG_DIR
    log_level: str = "INFO"

    @field_validator("write_threshold")
    @classmethod
    def _threshold_in_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"write_threshold must be within [0, 1], got {value}")
        return value

    @field_validator("pool_width", "max_attempts", "image_max_edge")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"must be >= 1, got {value}")
        return value

    @field_validator("image_quality")
    @classmethod
    def _jpeg_quality(cls, value: int) -> int:
        if not 1 <= value <= 95:
            raise ValueError(f"image_quality must be within [1, 95], got {value}")
        return value

    @field_validator("batch_delay_seconds")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError(f"batch_delay_seconds must be >= 0, got {value}")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
