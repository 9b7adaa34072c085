"""
Pydantic models for catalog entities and typed request inputs.
Implements the Book schema with its rating invariants.
"""

import json
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, StrictInt, ValidationError, model_validator, validator

from .errors import ConflictError, InvalidInputError

MIN_GRADE = 0
MAX_GRADE = 5

ModelT = TypeVar("ModelT", bound=BaseModel)


class BookAction(str, Enum):
    """Mutations gated by ownership."""
    UPDATE = "update"
    DELETE = "delete"


def validate_grade(grade: Any) -> int:
    """
    Check that a grade is an integer in the closed range [0, 5].

    Raises:
        InvalidInputError: with reason ``invalid_grade`` otherwise
    """
    if isinstance(grade, bool) or not isinstance(grade, int):
        raise InvalidInputError("Rating must be an integer between 0 and 5", reason="invalid_grade")
    if grade < MIN_GRADE or grade > MAX_GRADE:
        raise InvalidInputError("Rating must be between 0 and 5", reason="invalid_grade")
    return grade


def compute_average_rating(grades: Iterable[int]) -> int:
    """
    Mean of all grades rounded half up to the nearest integer.

    The mean is computed exactly with Decimal, so 2.5 always becomes 3.
    An empty set of grades averages to 0.
    """
    grades = list(grades)
    if not grades:
        return 0
    mean = Decimal(sum(grades)) / Decimal(len(grades))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Rating(BaseModel):
    """A single grade given by one rater."""
    rater_id: str = Field(..., description="Identifier of the user who rated")
    grade: int = Field(..., ge=MIN_GRADE, le=MAX_GRADE, description="Grade between 0 and 5")


class Book(BaseModel):
    """
    Catalog book with its rating history.

    ``average_rating`` is always derived from ``ratings`` on construction,
    and ``ratings`` never holds two entries for the same rater.
    """
    id: Optional[str] = Field(None, description="Store-assigned identifier")
    owner_id: str = Field(..., description="User who created the book")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    year: int = Field(..., description="Publication year")
    genre: str = Field(..., description="Book genre")
    image_url: str = Field(..., description="URL of the stored cover image")
    ratings: List[Rating] = Field(default_factory=list, description="One grade per rater")
    average_rating: int = Field(0, description="Rounded mean of all grades")
    revision: int = Field(0, ge=0, description="Optimistic concurrency token")

    @validator('ratings')
    def validate_unique_raters(cls, v):
        """Ensure no rater appears twice."""
        rater_ids = [rating.rater_id for rating in v]
        if len(rater_ids) != len(set(rater_ids)):
            raise ValueError('ratings must contain at most one grade per rater')
        return v

    @model_validator(mode="after")
    def derive_average_rating(self):
        self.average_rating = compute_average_rating(r.grade for r in self.ratings)
        return self

    def has_rated(self, rater_id: str) -> bool:
        return any(rating.rater_id == rater_id for rating in self.ratings)

    def with_rating(self, rater_id: str, grade: int) -> "Book":
        """
        Return a copy of this book with one more rating.

        The copy has its average recomputed and its revision bumped.

        Raises:
            InvalidInputError: if the grade is out of range
            ConflictError: if ``rater_id`` already rated this book
        """
        validate_grade(grade)
        if self.has_rated(rater_id):
            raise ConflictError("You have already rated this book", reason="duplicate_rater")

        ratings = list(self.ratings) + [Rating(rater_id=rater_id, grade=grade)]
        return Book(
            **self.dict(exclude={"ratings", "average_rating", "revision"}),
            ratings=ratings,
            revision=self.revision + 1,
        )

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Book":
        """Build a Book from a MongoDB document."""
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls(**data)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for MongoDB (the store owns ``_id``)."""
        return self.dict(exclude={"id"})


class BookCreate(BaseModel):
    """Fields accepted when creating a book. Unknown keys are dropped."""
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    year: int = Field(..., ge=0, le=9999, description="Publication year")
    genre: str = Field(..., min_length=1, description="Book genre")
    rating: Optional[StrictInt] = Field(None, description="Creator's own grade (defaults to 0)")

    model_config = {
        "extra": "ignore",
        "str_strip_whitespace": True,
    }


class BookUpdate(BaseModel):
    """Fields an owner may change. Unknown keys are dropped."""
    title: Optional[str] = Field(None, min_length=1, description="Book title")
    author: Optional[str] = Field(None, min_length=1, description="Book author")
    year: Optional[int] = Field(None, ge=0, le=9999, description="Publication year")
    genre: Optional[str] = Field(None, min_length=1, description="Book genre")

    model_config = {
        "extra": "ignore",
        "str_strip_whitespace": True,
    }

    def to_patch(self) -> Dict[str, Any]:
        """Only the fields the client actually supplied."""
        return self.dict(exclude_none=True)


class ImageUpload(BaseModel):
    """A cover image received from a client."""
    data: bytes = Field(..., description="Raw image bytes")
    filename: str = Field("image", description="Original file name")
    content_type: Optional[str] = Field(None, description="MIME type reported by the client")


class User(BaseModel):
    """Registered user."""
    id: Optional[str] = Field(None, description="Store-assigned identifier")
    email: str = Field(..., description="Unique, lower-cased email")
    password_hash: str = Field(..., description="Hashed password")

    @validator('email')
    def normalize_email(cls, v):
        """Store emails lower-cased."""
        return v.strip().lower()

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "User":
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls(**data)

    def to_document(self) -> Dict[str, Any]:
        return self.dict(exclude={"id"})


def parse_payload(model: Type[ModelT], payload: Any) -> ModelT:
    """
    Validate a client payload (JSON string or mapping) into a typed input.

    Raises:
        InvalidInputError: with reason ``invalid_payload`` on malformed JSON
            or failed field validation
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise InvalidInputError("Book payload is not valid JSON", reason="invalid_payload")

    if not isinstance(payload, dict):
        raise InvalidInputError("Book payload must be a JSON object", reason="invalid_payload")

    try:
        return model(**payload)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise InvalidInputError(
            f"Invalid book payload: {', '.join(fields) or 'unknown field'}",
            reason="invalid_payload",
        )
