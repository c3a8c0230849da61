from __future__ import annotations

from typing import Literal, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.app.domain.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"
    STORE_BACKEND: Literal["supabase", "memory"] = "supabase"

    SUPABASE_URL: Optional[AnyUrl] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_DIMENSIONS: int = Field(default=768, gt=0)

    PIPELINE_MAX_CONCURRENT_JOBS: int = Field(default=4, gt=0)
    PIPELINE_STEP_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)
    PIPELINE_SHUTDOWN_GRACE_SECONDS: float = Field(default=30.0, ge=0)

    SEARCH_SEMANTIC_WEIGHT: float = 0.7
    SEARCH_KEYWORD_WEIGHT: float = 0.3
    # ts_rank_cd label weights, each in [0, 1]
    SEARCH_NAME_WEIGHT: float = Field(default=1.0, ge=0, le=1)
    SEARCH_TAGS_WEIGHT: float = Field(default=0.4, ge=0, le=1)
    SEARCH_INGREDIENTS_WEIGHT: float = Field(default=1.0, ge=0, le=1)
    SEARCH_RESULT_LIMIT: int = Field(default=20, gt=0)

    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
    )

    def validate_config(self) -> list[str]:
        """Missing or inconsistent values for the selected backend. Empty when usable."""
        errors: list[str] = []
        if self.STORE_BACKEND == "supabase":
            if not self.SUPABASE_URL:
                errors.append("SUPABASE_URL is required when STORE_BACKEND=supabase")
            if not self.SUPABASE_SERVICE_ROLE_KEY:
                errors.append("SUPABASE_SERVICE_ROLE_KEY is required when STORE_BACKEND=supabase")
        if not self.GEMINI_API_KEY:
            errors.append("GEMINI_API_KEY is required")
        if self.SEARCH_SEMANTIC_WEIGHT < 0 or self.SEARCH_KEYWORD_WEIGHT < 0:
            errors.append("SEARCH_SEMANTIC_WEIGHT and SEARCH_KEYWORD_WEIGHT must not be negative")
        return errors

    def ensure_valid(self) -> None:
        errors = self.validate_config()
        if errors:
            raise ConfigurationError(errors)


settings = Settings()
