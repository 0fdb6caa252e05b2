"""
Configuration management using environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path


BASE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    API_TITLE: str = "Visual Product Match API"
    API_DESCRIPTION: str = "Upload an image or URL and get visually similar catalog products ranked by AI similarity"
    API_VERSION: str = "1.0.0"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # Similarity Oracle Settings
    SIMILARITY_PROVIDER: str = "gemini"  # Options: gemini, replicate
    GEMINI_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gemini-2.5-flash"
    REPLICATE_API_TOKEN: Optional[str] = None
    REPLICATE_MODEL: str = "yorickvp/llava-13b:b5f6212d032508382d61ff00469ddda3e32fd8a0e75dc39d8a4191bb742157fb"
    ORACLE_REQUEST_DELAY_MS: int = 100  # Spacing before each Gemini call
    IMAGE_FETCH_TIMEOUT: float = 15.0  # Seconds, for remote image downloads

    # Batch Similarity Settings
    SIMILARITY_THRESHOLD: float = 0.3  # Only scores strictly above this are stored
    SIMILARITY_BATCH_SIZE: int = 5
    SIMILARITY_BATCH_DELAY_MS: int = 1000
    SIMILARITY_PACING: str = "fixed"  # Options: fixed, token_bucket
    SIMILARITY_RATE_PER_SECOND: float = 5.0  # Used by token_bucket pacing
    FALLBACK_SCORE_MIN: float = 0.3
    FALLBACK_SCORE_MAX: float = 0.8

    # Catalog Settings
    CATALOG_PATH: str = str(BASE_DIR / "data" / "catalog.json")

    # File Upload Settings
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Results Settings
    RESULTS_PAGE_SIZE: int = 12

    CORS_ORIGINS: List[str] = ["*"]  # Configure appropriately for production

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


settings = Settings()
