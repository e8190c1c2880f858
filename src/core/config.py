"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Pet Try-On Compositor"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True
    PORT: int = 3000

    # ==========================================================================
    # Temp Storage Settings
    # ==========================================================================
    # "local" writes uploads under TEMP_STORAGE_PATH, "memory" keeps them in-process
    TEMP_STORAGE_BACKEND: str = "local"
    TEMP_STORAGE_PATH: str = "./data/tmp"
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB

    # ==========================================================================
    # Vision Inference (OpenAI-compatible completion API)
    # ==========================================================================
    VISION_API_BASE_URL: str = "https://api.groq.com/openai/v1"
    GROQ_API_KEY: Optional[str] = None
    VISION_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    VISION_TIMEOUT_SECONDS: float = 8.0

    # Payload sent to the vision model is downsampled to this width
    VISION_MAX_WIDTH: int = 512
    VISION_JPEG_QUALITY: int = 60

    # ==========================================================================
    # Placement Settings
    # ==========================================================================
    # Overlay width as a fraction of subject width when no hint is supplied
    DEFAULT_OVERLAY_FRACTION: float = 0.45
    # Largest accepted overlay_width hint, as a multiple of subject width
    MAX_OVERLAY_SCALE: float = 4.0

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "*"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()

# Ensure critical directories exist
if settings.TEMP_STORAGE_BACKEND == "local":
    Path(settings.TEMP_STORAGE_PATH).mkdir(parents=True, exist_ok=True)
