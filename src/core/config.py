"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Image Transformation Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Upload Limits
    # ==========================================================================
    MAX_UPLOAD_SIZE_BYTES: int = 15 * 1024 * 1024  # 15MB

    # ==========================================================================
    # Background Removal
    # ==========================================================================
    # Admission is local to this process; every instance keeps its own counter
    MAX_CONCURRENT_REMOVALS: int = 2
    BUSY_RETRY_AFTER_SECONDS: int = 5

    # rembg model name (u2net, isnet-general-use, birefnet-general, ...)
    SEGMENTATION_MODEL: str = "isnet-general-use"

    # Skip the ML model and use the deterministic stand-in (dev / CI)
    SIMULATE_SEGMENTATION: bool = False

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
