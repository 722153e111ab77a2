"""
Firm Match - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: str = Field(default="")
    LOG_TO_FILE: bool = Field(default=True)

    # Match pipeline thresholds
    THRESHOLD_JW: float = Field(default=0.8)
    THRESHOLD_BLOCKING: float = Field(default=0.4)
    THRESHOLD_RARITY: float = Field(default=1.0)

    # Engine tuning
    LSH_BANDS: int = Field(default=100)
    LSH_BAND_WIDTH: int = Field(default=4)
    RARITY_MIN_TOKEN_LENGTH: int = Field(default=5)
    RARITY_COMMON_QUANTILE: float = Field(default=0.8)
    TOKEN_SEARCH_LIMIT: int = Field(default=25)

    # Judgment service ("azure" or "anthropic")
    JUDGE_PROVIDER: str = Field(default="azure")

    AZURE_ENDPOINT: str = Field(default="")
    AZURE_API_KEY: str = Field(default="")
    AZURE_DEPLOYMENT: str = Field(default="")

    ANTHROPIC_API_KEY: str = Field(default="")
    JUDGE_MODEL: str = Field(default="claude-sonnet-4-20250514")

    # Verification batching
    LLM_BATCH_SIZE: int = Field(default=20)
    LLM_CONCURRENCY: int = Field(default=5)
    LLM_MAX_ATTEMPTS: int = Field(default=3)
    LLM_TIMEOUT: int = Field(default=60)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
