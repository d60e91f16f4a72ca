"""Application configuration.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults for
local development.  ``.env`` support is implemented by loading files
from the repository root in a defined order.  You can override any
value via environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Receiptscan"
    ENVIRONMENT: str = Field(default="development")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    # Use a local SQLite file when DATABASE_URL is unset (development only)
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=True)

    # Auth (HS256 bearer tokens carrying a ``user_id`` claim)
    JWT_SECRET: str = Field(default="changeme")
    JWT_ALGORITHM: str = Field(default="HS256")

    # Receipt classifier (Custom Vision prediction endpoint)
    AZURE_CUSTOM_VISION_URL: Optional[str] = Field(default=None)
    AZURE_CUSTOM_VISION_KEY: Optional[str] = Field(default=None)
    CLASSIFICATION_POSITIVE_TAG: str = Field(default="Positive")
    # A prediction must be strictly above this probability to count
    CLASSIFICATION_THRESHOLD: float = Field(default=0.7)

    # Document analysis (Form Recognizer prebuilt receipt model)
    AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT: Optional[str] = Field(default=None)
    AZURE_DOCUMENT_INTELLIGENCE_KEY: Optional[str] = Field(default=None)
    ANALYSIS_POLL_INITIAL_INTERVAL: float = Field(default=2.0)
    ANALYSIS_POLL_MAX_INTERVAL: float = Field(default=16.0)
    ANALYSIS_POLL_TIMEOUT: float = Field(default=120.0)

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0)

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Background processing; an in-memory broker is used when unset
    DRAMATIQ_BROKER_URL: Optional[str] = Field(default=None)

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()


def is_development() -> bool:
    return (settings.ENVIRONMENT or "development").lower() == "development"


def database_url() -> str:
    """Return the configured database URL, falling back to SQLite in development."""
    url = settings.DATABASE_URL or os.getenv("DATABASE_URL")
    if url:
        return url
    if not settings.DB_DEV_FALLBACK_SQLITE:
        raise RuntimeError(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false a Postgres URL is required."
        )
    return "sqlite+aiosqlite:///./receiptscan.db"
