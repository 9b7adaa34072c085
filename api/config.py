"""
API configuration settings.
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Book Catalog API"
    api_version: str = "1.0.0"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    public_base_url: str = "http://localhost:8000"  # Used to build cover image URLs

    # Security Settings (no default: the signing secret must come from the environment)
    jwt_secret: str = Field(..., env="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    access_token_expire_hours: int = 24

    # Ranking
    best_rating_limit: int = 3

    # CORS Settings
    cors_origins: list = ["*"]  # Configure appropriately for production
    cors_allow_credentials: bool = True
    cors_allow_methods: list = ["*"]
    cors_allow_headers: list = ["*"]

    # Logging
    log_level: str = "INFO"

    @validator('jwt_secret')
    def validate_jwt_secret(cls, v):
        """Refuse short signing secrets."""
        if len(v) < 16:
            raise ValueError('jwt_secret must be at least 16 characters long')
        return v

    @validator('best_rating_limit')
    def validate_best_rating_limit(cls, v):
        """Ensure the default ranking size is reasonable."""
        if v < 1 or v > 50:
            raise ValueError('best_rating_limit must be between 1 and 50')
        return v

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }


# Global config instance
config = APIConfig()
