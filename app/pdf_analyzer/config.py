"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI-compatible completion endpoint
    model: str = "google/gemma-3-4b"
    openai_base_url: str = "http://localhost:1234/v1"
    openai_api_key: str = "lm-studio"
    completion_timeout: float = 600.0

    # Rasterization
    pdf_dpi: int = 72
    max_pages: int = 0  # 0 = all pages
    rasterizer_timeout: float = 120.0  # 0 = no timeout
    max_image_side: int = 0  # 0 = send rendered pages as-is

    # Working directories
    uploads_dir: Path = Path(".tmp_uploads")
    pages_dir: Path = Path(".tmp_pages")

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # Debug flags
    debug: bool = False

    model_config = SettingsConfigDict(
        # Load from .env file in the package directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
