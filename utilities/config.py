"""
Catalog settings read from the environment (or a .env file).
Covers the document store, cover image storage, rating retries and logging.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["json", "console"]


class CatalogConfig(BaseSettings):
    """
    Settings shared by the catalog services.

    ``mongodb_url`` has no default and must be provided.
    """

    # MongoDB
    mongodb_url: str = Field(..., env="MONGODB_URL")
    mongodb_database: str = Field(default="book_catalog", env="MONGODB_DATABASE")
    books_collection: str = Field(default="books", env="BOOKS_COLLECTION")
    users_collection: str = Field(default="users", env="USERS_COLLECTION")

    # Cover images, served under /images
    images_dir: str = Field(default="images", env="IMAGES_DIR")

    # Conditional rating writes before giving up under contention
    rating_max_attempts: int = Field(default=10, ge=1, le=100, env="RATING_MAX_ATTEMPTS")

    # Logging
    log_level: LogLevel = Field(default="INFO", env="LOG_LEVEL")
    log_format: LogFormat = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")
    debug: bool = Field(default=False, env="DEBUG")

    @validator('mongodb_url')
    def validate_mongodb_url(cls, v):
        """Accept standard and SRV connection strings only."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError('mongodb_url must start with mongodb:// or mongodb+srv://')
        return v

    @validator('log_level', pre=True)
    def normalize_log_level(cls, v):
        return str(v).strip().upper()

    @validator('log_format', pre=True)
    def normalize_log_format(cls, v):
        return str(v).strip().lower()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def get_log_file_path(self) -> Optional[Path]:
        return Path(self.log_file) if self.log_file else None

    def get_images_path(self) -> Path:
        return Path(self.images_dir)


config = CatalogConfig()
