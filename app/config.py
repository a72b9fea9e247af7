"""Application configuration settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "lab_extraction"

    # Provider credentials
    OPENAI_API_KEY: str = ""
    GOOGLE_API_KEY: str = ""

    # Stage 1: extraction model
    EXTRACTION_PROVIDER: str = "gemini"  # gemini | openai
    EXTRACTION_MODEL: str = "gemini-3-pro-preview"
    EXTRACTION_THINKING_LEVEL: str = "high"

    # Stage 2: verification model
    VERIFICATION_PROVIDER: str = "openai"  # gemini | openai
    VERIFICATION_MODEL: str = "gpt-5.1"
    VERIFICATION_REASONING_EFFORT: str = "medium"

    # Stage 3: optional model-assisted name matching
    MATCHING_MODEL_ASSIST: bool = False
    MATCHING_ASSIST_MODEL: str = "gpt-4o"

    # Provider calls
    AI_REQUEST_TIMEOUT_SECONDS: float = 600.0
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_RETRY_WAIT_SECONDS: float = 2.0

    # Chunking
    CHUNK_MIN_PAGES: int = 2
    CHUNK_MIN_BYTES: int = 5 * 1024 * 1024
    MAX_PAGE_CONCURRENCY: int = 3

    # Merge
    DUPLICATE_VALUE_TOLERANCE: float = 0.01  # relative

    # Job lifecycle
    STUCK_JOB_THRESHOLD_MINUTES: int = 20

    # Telemetry
    CAPTURE_DEBUG_INFO: bool = True
    RAW_RESPONSE_MAX_CHARS: int = 50000
    RAW_RESPONSE_PREVIEW_CHARS: int = 500

    # Application
    APP_NAME: str = "Lab Report Extraction"
    API_V1_PREFIX: str = "/api/v1"
    PORT: int = 8001

    # CORS
    BACKEND_CORS_ORIGINS: str = '["http://localhost:3000", "http://localhost:5173"]'

    # File storage
    UPLOAD_DIR: str = "/tmp/lab_uploads"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from JSON string."""
        try:
            return json.loads(self.BACKEND_CORS_ORIGINS)
        except json.JSONDecodeError:
            return ["http://localhost:3000"]


settings = Settings()
