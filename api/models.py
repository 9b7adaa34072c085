"""
API models and schemas for the FastAPI application.
"""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, StrictInt, validator

from catalog.models import Book

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RatingResponse(BaseModel):
    """A single rating as returned by the API."""
    rater_id: str = Field(..., description="User who gave the grade")
    grade: int = Field(..., description="Grade between 0 and 5")


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    owner_id: str = Field(..., description="User who created the book")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    year: int = Field(..., description="Publication year")
    genre: str = Field(..., description="Book genre")
    image_url: str = Field(..., description="Book cover image URL")
    ratings: List[RatingResponse] = Field(default_factory=list, description="All ratings")
    average_rating: int = Field(..., description="Rounded mean of all grades")

    @classmethod
    def from_book(cls, book: Book) -> "BookResponse":
        return cls(**book.dict(exclude={"revision"}))


class RatingRequest(BaseModel):
    """Body of a rating submission. The rater always comes from the token."""
    rating: StrictInt = Field(..., description="Integer grade between 0 and 5")

    model_config = {"extra": "ignore"}


class SignupRequest(BaseModel):
    """Signup request body."""
    email: str = Field(..., description="User email")
    password: str = Field(..., min_length=8, description="Password (at least 8 characters)")

    @validator('email')
    def validate_email(cls, v):
        """Ensure the email has a plausible shape."""
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError('email is not valid')
        return v


class LoginRequest(BaseModel):
    """Login request body."""
    email: str = Field(..., description="User email")
    password: str = Field(..., description="User password")


class LoginResponse(BaseModel):
    """Successful login."""
    user_id: str = Field(..., description="Authenticated user id")
    token: str = Field(..., description="Bearer token")


class MessageResponse(BaseModel):
    """Plain confirmation message."""
    message: str = Field(..., description="Human-readable message")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    kind: str = Field(..., description="Stable error kind")
    reason: Optional[str] = Field(None, description="Finer-grained reason code")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
