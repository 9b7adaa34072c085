"""
Tests for the MongoDB manager against mocked Motor collections.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from bson import ObjectId
from pymongo.errors import ConnectionFailure, DuplicateKeyError, OperationFailure

from catalog.database import MongoDBManager, to_object_id
from catalog.errors import ConflictError, PersistenceFailure
from catalog.models import User

BOOK_ID = "64b7f0c2a1b2c3d4e5f60718"


class FakeCursor:
    """Minimal stand-in for a Motor cursor."""

    def __init__(self, documents):
        self.documents = documents
        self.sort_spec = None
        self.limit_value = None

    def sort(self, spec):
        self.sort_spec = spec
        return self

    def limit(self, value):
        self.limit_value = value
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self.documents:
            yield document


def book_document(object_id=None, **overrides):
    document = {
        "_id": object_id or ObjectId(BOOK_ID),
        "owner_id": "user-a",
        "title": "Dune",
        "author": "Frank Herbert",
        "year": 1965,
        "genre": "Science fiction",
        "image_url": "http://testserver/images/dune.png",
        "ratings": [{"rater_id": "user-a", "grade": 4}],
        "average_rating": 4,
        "revision": 0,
    }
    document.update(overrides)
    return document


@pytest.fixture
def manager():
    """MongoDB manager with mocked collections."""
    manager = MongoDBManager("mongodb://localhost:27017", "book_catalog_test")
    manager.books = MagicMock()
    manager.users = MagicMock()
    manager.database = MagicMock()
    return manager


class TestObjectIds:
    """Test cases for id parsing."""

    @pytest.mark.parametrize("value", ["", None, "not-an-id", "123", "zz" * 12])
    def test_invalid_ids(self, value):
        assert to_object_id(value) is None

    def test_valid_id(self):
        assert to_object_id(BOOK_ID) == ObjectId(BOOK_ID)


class TestConnection:
    """Test cases for connection management."""

    @pytest.mark.asyncio
    async def test_connect_creates_indexes(self):
        manager = MongoDBManager("mongodb://localhost:27017", "book_catalog_test")
        client = MagicMock()
        client.admin.command = AsyncMock(return_value={"ok": 1})
        collection = MagicMock()
        collection.create_index = AsyncMock()
        client.__getitem__.return_value.__getitem__.return_value = collection

        with patch("catalog.database.AsyncIOMotorClient", return_value=client):
            await manager.connect()

        client.admin.command.assert_awaited_once_with('ping')
        collection.create_index.assert_any_await("email", unique=True)
        collection.create_index.assert_any_await("average_rating")

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        manager = MongoDBManager("mongodb://localhost:27017", "book_catalog_test")
        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=ConnectionFailure("refused"))

        with patch("catalog.database.AsyncIOMotorClient", return_value=client):
            with pytest.raises(PersistenceFailure):
                await manager.connect()

    @pytest.mark.asyncio
    async def test_ping(self, manager):
        manager.database.command = AsyncMock(return_value={"ok": 1})
        assert await manager.ping() is True

        manager.database.command = AsyncMock(side_effect=ConnectionFailure("gone"))
        assert await manager.ping() is False


class TestBooks:
    """Test cases for book operations."""

    @pytest.mark.asyncio
    async def test_find_book(self, manager):
        manager.books.find_one = AsyncMock(return_value=book_document())

        book = await manager.find_book(BOOK_ID)

        assert book.id == BOOK_ID
        assert book.average_rating == 4
        manager.books.find_one.assert_awaited_once_with({"_id": ObjectId(BOOK_ID)})

    @pytest.mark.asyncio
    async def test_find_book_missing(self, manager):
        manager.books.find_one = AsyncMock(return_value=None)
        assert await manager.find_book(BOOK_ID) is None

    @pytest.mark.asyncio
    async def test_find_book_malformed_id_skips_query(self, manager):
        manager.books.find_one = AsyncMock()

        assert await manager.find_book("not-an-id") is None
        manager.books.find_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_book_driver_error(self, manager):
        manager.books.find_one = AsyncMock(side_effect=OperationFailure("boom"))

        with pytest.raises(PersistenceFailure) as exc_info:
            await manager.find_book(BOOK_ID)

        assert "boom" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_find_books_sorted_and_limited(self, manager):
        cursor = FakeCursor([
            book_document(ObjectId(), average_rating=5, ratings=[{"rater_id": "a", "grade": 5}]),
            book_document(ObjectId(), average_rating=3, ratings=[{"rater_id": "a", "grade": 3}]),
        ])
        manager.books.find.return_value = cursor

        books = await manager.find_books(sort=[("average_rating", -1)], limit=3)

        assert [b.average_rating for b in books] == [5, 3]
        assert cursor.sort_spec == [("average_rating", -1)]
        assert cursor.limit_value == 3

    @pytest.mark.asyncio
    async def test_find_books_unsorted(self, manager):
        cursor = FakeCursor([])
        manager.books.find.return_value = cursor

        assert await manager.find_books() == []
        assert cursor.sort_spec is None
        assert cursor.limit_value is None

    @pytest.mark.asyncio
    async def test_insert_book(self, manager, sample_book):
        new_id = ObjectId()
        manager.books.insert_one = AsyncMock(return_value=MagicMock(inserted_id=new_id))

        assert await manager.insert_book(sample_book) == str(new_id)

        document = manager.books.insert_one.call_args[0][0]
        assert "id" not in document and "_id" not in document
        assert document["owner_id"] == "user-a"

    @pytest.mark.asyncio
    async def test_update_book(self, manager):
        manager.books.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

        assert await manager.update_book(BOOK_ID, {"title": "Dune Messiah"}) is True
        manager.books.update_one.assert_awaited_once_with(
            {"_id": ObjectId(BOOK_ID)}, {"$set": {"title": "Dune Messiah"}}
        )

    @pytest.mark.asyncio
    async def test_update_book_not_found(self, manager):
        manager.books.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        assert await manager.update_book(BOOK_ID, {"title": "X"}) is False

    @pytest.mark.asyncio
    async def test_replace_ratings_conditions_on_revision(self, manager, sample_book):
        manager.books.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        updated = sample_book.with_rating("user-b", 2).with_rating("user-c", 5)

        assert await manager.replace_ratings(updated, expected_revision=1) is True

        query, update = manager.books.update_one.call_args[0]
        assert query == {"_id": ObjectId(sample_book.id), "revision": 1}
        assert update["$set"]["revision"] == 2
        assert update["$set"]["average_rating"] == 4
        assert len(update["$set"]["ratings"]) == 3

    @pytest.mark.asyncio
    async def test_replace_ratings_accepts_documents_without_revision(self, manager, sample_book):
        manager.books.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

        await manager.replace_ratings(sample_book.with_rating("user-b", 2), expected_revision=0)

        query = manager.books.update_one.call_args[0][0]
        assert query["$or"] == [{"revision": 0}, {"revision": {"$exists": False}}]

    @pytest.mark.asyncio
    async def test_replace_ratings_lost_race(self, manager, sample_book):
        manager.books.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        assert await manager.replace_ratings(sample_book.with_rating("user-b", 2), 0) is False

    @pytest.mark.asyncio
    async def test_delete_book(self, manager):
        manager.books.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        assert await manager.delete_book(BOOK_ID) is True

        manager.books.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
        assert await manager.delete_book(BOOK_ID) is False

    @pytest.mark.asyncio
    async def test_delete_driver_error(self, manager):
        manager.books.delete_one = AsyncMock(side_effect=ConnectionFailure("gone"))
        with pytest.raises(PersistenceFailure):
            await manager.delete_book(BOOK_ID)


class TestUsers:
    """Test cases for user operations."""

    @pytest.mark.asyncio
    async def test_insert_user(self, manager):
        new_id = ObjectId()
        manager.users.insert_one = AsyncMock(return_value=MagicMock(inserted_id=new_id))

        user_id = await manager.insert_user(User(email="A@Example.com", password_hash="hash"))

        assert user_id == str(new_id)
        assert manager.users.insert_one.call_args[0][0] == {"email": "a@example.com", "password_hash": "hash"}

    @pytest.mark.asyncio
    async def test_duplicate_email(self, manager):
        manager.users.insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))

        with pytest.raises(ConflictError) as exc_info:
            await manager.insert_user(User(email="a@example.com", password_hash="hash"))

        assert exc_info.value.reason == "duplicate_email"

    @pytest.mark.asyncio
    async def test_find_user_by_email_normalizes(self, manager):
        manager.users.find_one = AsyncMock(return_value={
            "_id": ObjectId(BOOK_ID), "email": "a@example.com", "password_hash": "hash"
        })

        user = await manager.find_user_by_email(" A@Example.com ")

        assert user.id == BOOK_ID
        manager.users.find_one.assert_awaited_once_with({"email": "a@example.com"})
