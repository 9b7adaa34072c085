"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile

# Required settings must exist before the config modules are imported
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DATABASE", "book_catalog_test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-the-catalog")
os.environ.setdefault("IMAGES_DIR", os.path.join(tempfile.gettempdir(), "book-catalog-test-images"))

import copy
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId

from catalog.errors import ConflictError
from catalog.models import Book, BookCreate, ImageUpload, User
from catalog.service import BookService
from catalog.storage import LocalImageStorage


class InMemoryStore:
    """
    Dict-backed stand-in for MongoDBManager.

    Mirrors its book and user operations, including the revision-conditioned
    rating write, so services can be exercised without a MongoDB server.
    """

    def __init__(self):
        self.books: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}

    async def ping(self) -> bool:
        return True

    async def find_book(self, book_id: str) -> Optional[Book]:
        document = self.books.get(book_id)
        if document is None:
            return None
        return Book.from_document({"_id": book_id, **copy.deepcopy(document)})

    async def find_books(self, sort=None, limit=None) -> List[Book]:
        items = list(self.books.items())
        for field, direction in reversed(list(sort or [])):
            items = sorted(items, key=lambda item: item[1][field], reverse=direction == -1)
        if limit:
            items = items[:limit]
        return [Book.from_document({"_id": book_id, **copy.deepcopy(doc)}) for book_id, doc in items]

    async def insert_book(self, book: Book) -> str:
        book_id = str(ObjectId())
        self.books[book_id] = book.to_document()
        return book_id

    async def update_book(self, book_id: str, patch: Dict[str, Any]) -> bool:
        if book_id not in self.books:
            return False
        self.books[book_id].update(copy.deepcopy(patch))
        return True

    async def replace_ratings(self, book: Book, expected_revision: int) -> bool:
        document = self.books.get(book.id)
        if document is None or document.get("revision", 0) != expected_revision:
            return False
        new_document = book.to_document()
        for field in ("ratings", "average_rating", "revision"):
            document[field] = new_document[field]
        return True

    async def delete_book(self, book_id: str) -> bool:
        return self.books.pop(book_id, None) is not None

    async def insert_user(self, user: User) -> str:
        if any(doc["email"] == user.email for doc in self.users.values()):
            raise ConflictError("Email is already registered", reason="duplicate_email")
        user_id = str(ObjectId())
        self.users[user_id] = user.to_document()
        return user_id

    async def find_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user_id, document in self.users.items():
            if document["email"] == email:
                return User.from_document({"_id": user_id, **document})
        return None


@pytest.fixture
def store():
    """Empty in-memory book and user store."""
    return InMemoryStore()


@pytest.fixture
def image_storage(tmp_path):
    """Image storage writing into a temporary directory."""
    return LocalImageStorage(str(tmp_path / "images"), "http://testserver")


@pytest.fixture
def book_service(store, image_storage):
    """Book service over the in-memory store."""
    return BookService(store, image_storage)


@pytest.fixture
def png_upload():
    """A small PNG cover upload."""
    return ImageUpload(
        data=b"\x89PNG\r\n\x1a\n" + b"\x00" * 32,
        filename="cover page.png",
        content_type="image/png"
    )


@pytest.fixture
def book_fields():
    """Valid creation fields without a creator grade."""
    return BookCreate(
        title="Dune",
        author="Frank Herbert",
        year=1965,
        genre="Science fiction"
    )


@pytest.fixture
def sample_book():
    """A stored-looking book owned by user-a with one rating."""
    from catalog.models import Rating

    return Book(
        id="64b7f0c2a1b2c3d4e5f60718",
        owner_id="user-a",
        title="Dune",
        author="Frank Herbert",
        year=1965,
        genre="Science fiction",
        image_url="http://testserver/images/dune_1.png",
        ratings=[Rating(rater_id="user-a", grade=4)],
    )
