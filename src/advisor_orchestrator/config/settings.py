"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "advisor-orchestrator"
    app_env: str = "dev"
    log_level: str = "INFO"
    storage_backend: str = "postgres"
    database_url: str = ""

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=20.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_max_tokens: int = Field(default=1000, ge=1)
    openai_api_key: str = ""

    tool_timeout_s: float = Field(default=15.0, ge=0.01)
    tool_max_retries: int = Field(default=0, ge=0)
    tool_retry_backoff_s: float = Field(default=0.0, ge=0.0)

    task_max_retries: int = Field(default=3, ge=0)
    task_retry_backoff_s: float = Field(default=0.0, ge=0.0)
    max_steps_per_drive: int = Field(default=10, ge=1)
    update_conflict_retries: int = Field(default=5, ge=0)
    stale_waiting_after_hours: float | None = Field(default=None, gt=0)
    match_recent_task_minutes: int = Field(default=0, ge=0)
    meeting_timezone: str = "UTC"

    context_limit: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    chroma_persist_path: str = ""
    chroma_collection: str = "advisor_documents"

    resume_workers: int = Field(default=2, ge=1)
    resume_job_history: int = Field(default=500, ge=1)
    google_api_base_url: str = "https://www.googleapis.com"
    gmail_api_base_url: str = "https://gmail.googleapis.com/gmail/v1"
    hubspot_api_base_url: str = "https://api.hubapi.com"

    model_config = SettingsConfigDict(
        env_prefix="ADVISOR_AGENT_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("ORCHESTRATOR_DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
