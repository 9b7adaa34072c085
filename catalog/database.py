"""
MongoDB database utilities for async operations.
Handles connection, indexing, and CRUD operations for books and users.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import ConflictError, PersistenceFailure
from .models import Book, User

logger = structlog.get_logger(__name__)


def to_object_id(document_id: str) -> Optional[ObjectId]:
    """Parse a hex id, returning None for anything that is not an ObjectId."""
    if not document_id:
        return None
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class MongoDBManager:
    """
    Async MongoDB manager for book and user documents.

    Every driver error is logged and surfaced as PersistenceFailure; the
    manager never retries on its own.
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        books_collection: str = "books",
        users_collection: str = "users",
    ):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            books_collection: Name of the books collection
            users_collection: Name of the users collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.books_collection_name = books_collection
        self.users_collection_name = users_collection
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.books: Optional[AsyncIOMotorCollection] = None
        self.users: Optional[AsyncIOMotorCollection] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]
            self.books = self.database[self.books_collection_name]
            self.users = self.database[self.users_collection_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except PyMongoError as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise PersistenceFailure("Database unavailable")

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def ping(self) -> bool:
        """Check that the database answers."""
        try:
            await self.database.command("ping")
            return True
        except PyMongoError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def _create_indexes(self) -> None:
        # Unique emails back the signup conflict check
        await self.users.create_index("email", unique=True)

        # Best-rated listing sorts on average_rating
        await self.books.create_index("average_rating")
        await self.books.create_index("owner_id")

        logger.info("Successfully created MongoDB indexes")

    async def find_book(self, book_id: str) -> Optional[Book]:
        """
        Get a book by id.

        Args:
            book_id: Hex ObjectId of the book

        Returns:
            Book if found, None otherwise (including malformed ids)
        """
        object_id = to_object_id(book_id)
        if object_id is None:
            return None

        try:
            document = await self.books.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise PersistenceFailure("Failed to retrieve book")

        return Book.from_document(document) if document else None

    async def find_books(
        self,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[Book]:
        """
        Get all books, optionally sorted and limited.

        Args:
            sort: List of (field, direction) pairs
            limit: Maximum number of books to return
        """
        try:
            cursor = self.books.find({})
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)

            books = []
            async for document in cursor:
                books.append(Book.from_document(document))

            logger.debug("Retrieved books", count=len(books), limit=limit)
            return books

        except PyMongoError as e:
            logger.error("Failed to retrieve books", error=str(e))
            raise PersistenceFailure("Failed to retrieve books")

    async def insert_book(self, book: Book) -> str:
        """
        Insert a book.

        Returns:
            The store-assigned id
        """
        try:
            result = await self.books.insert_one(book.to_document())
            book_id = str(result.inserted_id)
            logger.debug("Successfully inserted book", book_id=book_id, title=book.title)
            return book_id

        except PyMongoError as e:
            logger.error("Failed to insert book", title=book.title, error=str(e))
            raise PersistenceFailure("Failed to save book")

    async def update_book(self, book_id: str, patch: Dict[str, Any]) -> bool:
        """
        Set fields on a book.

        Args:
            book_id: Hex ObjectId of the book to update
            patch: Dictionary of fields to set

        Returns:
            bool: True if a book matched, False if not found
        """
        object_id = to_object_id(book_id)
        if object_id is None:
            return False

        try:
            result = await self.books.update_one({"_id": object_id}, {"$set": patch})
        except PyMongoError as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise PersistenceFailure("Failed to update book")

        if result.matched_count == 0:
            logger.warning("Book not found for update", book_id=book_id)
            return False
        return True

    async def replace_ratings(self, book: Book, expected_revision: int) -> bool:
        """
        Write a book's ratings, average and revision in one conditional update.

        The write only applies if the stored revision still equals
        ``expected_revision``; documents written before revisions existed
        count as revision 0.

        Returns:
            bool: True if the write applied, False if the book changed or vanished
        """
        object_id = to_object_id(book.id)
        if object_id is None:
            return False

        if expected_revision == 0:
            revision_filter = {"$or": [{"revision": 0}, {"revision": {"$exists": False}}]}
        else:
            revision_filter = {"revision": expected_revision}

        document = book.to_document()
        try:
            result = await self.books.update_one(
                {"_id": object_id, **revision_filter},
                {"$set": {
                    "ratings": document["ratings"],
                    "average_rating": document["average_rating"],
                    "revision": document["revision"],
                }},
            )
        except PyMongoError as e:
            logger.error("Failed to save rating", book_id=book.id, error=str(e))
            raise PersistenceFailure("Failed to save rating")

        return result.matched_count == 1

    async def delete_book(self, book_id: str) -> bool:
        """
        Delete a book by id.

        Returns:
            bool: True if deleted, False if not found
        """
        object_id = to_object_id(book_id)
        if object_id is None:
            return False

        try:
            result = await self.books.delete_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise PersistenceFailure("Failed to delete book")

        if result.deleted_count > 0:
            logger.debug("Successfully deleted book", book_id=book_id)
            return True

        logger.warning("Book not found for deletion", book_id=book_id)
        return False

    async def insert_user(self, user: User) -> str:
        """
        Insert a user.

        Raises:
            ConflictError: if the email is already registered
        """
        try:
            result = await self.users.insert_one(user.to_document())
            return str(result.inserted_id)

        except DuplicateKeyError:
            logger.warning("User already exists", email=user.email)
            raise ConflictError("Email is already registered", reason="duplicate_email")

        except PyMongoError as e:
            logger.error("Failed to insert user", error=str(e))
            raise PersistenceFailure("Failed to save user")

    async def find_user_by_email(self, email: str) -> Optional[User]:
        try:
            document = await self.users.find_one({"email": email.strip().lower()})
        except PyMongoError as e:
            logger.error("Failed to retrieve user", error=str(e))
            raise PersistenceFailure("Failed to retrieve user")

        return User.from_document(document) if document else None
