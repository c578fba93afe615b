"""Configuration settings for the focus engine, loaded from FOCUS_* environment variables."""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from focus_engine.models.task import PrioritySet


class DatabaseSettings(BaseModel):
    path: str = "~/.focus-engine/data.db"   # ":memory:" for throwaway runs


class OpenAISettings(BaseModel):
    api_key: Optional[str] = None           # Falls back to OPENAI_API_KEY in the client
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = 0.2
    max_tokens: int = 800
    timeout_seconds: float = 30.0
    cache_hours: int = 24
    cost_per_token: float = 0.0000002


class ScoringSettings(BaseModel):
    knn_k: int = Field(default=5, ge=1)
    bootstrap_threshold: int = Field(default=20, ge=0)
    knn_threshold: int = Field(default=100, ge=1)
    embedding_dimension: int = Field(default=1536, ge=1)
    embedding_retries: int = Field(default=3, ge=1)
    embedding_backoff_seconds: float = Field(default=1.0, ge=0.0)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "ScoringSettings":
        if self.bootstrap_threshold >= self.knn_threshold:
            raise ValueError("bootstrap_threshold must be below knn_threshold")
        return self


class ScheduleSettings(BaseModel):
    timezone: str = "UTC"
    prioritize_minutes: int = Field(default=10, ge=1)
    cleanup_cron: str = "0 3 * * *"
    process_minutes: int = Field(default=30, ge=1)
    startup_delay_seconds: float = Field(default=5.0, ge=0.0)
    sync_minutes: Dict[str, int] = {}       # Per-source override; unlisted sources use default_sync_minutes
    default_sync_minutes: int = Field(default=5, ge=1)


class LimitSettings(BaseModel):
    enable_ai_processing: bool = True
    max_ai_processing_per_run: int = Field(default=0, ge=0)     # 0 = unlimited
    estimated_tokens_per_thread: int = Field(default=500, ge=0)


class PrioritySettings(BaseModel):
    """Statically configured defaults, used when the priorities table is empty."""

    okrs: List[str] = []
    focus_areas: List[str] = []
    key_stakeholders: List[str] = []
    key_projects: List[str] = []

    def to_priority_set(self) -> PrioritySet:
        return PrioritySet(
            okrs=list(self.okrs),
            focus_areas=list(self.focus_areas),
            key_stakeholders=list(self.key_stakeholders),
            key_projects=list(self.key_projects),
        )


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    database: DatabaseSettings = DatabaseSettings()
    openai: OpenAISettings = OpenAISettings()
    scoring: ScoringSettings = ScoringSettings()
    schedule: ScheduleSettings = ScheduleSettings()
    limits: LimitSettings = LimitSettings()
    priorities: PrioritySettings = PrioritySettings()
    log_level: str = "INFO"

    # HTTP adapter; disabled when port is 0
    api_host: str = "127.0.0.1"
    api_port: int = 0

    model_config = SettingsConfigDict(
        env_prefix="FOCUS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
