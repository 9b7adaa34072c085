"""
Book catalog service layer.
"""

from typing import List, Optional

import structlog

from .errors import CatalogError, InvalidInputError, NotFoundError, StorageFailure
from .models import Book, BookAction, BookCreate, BookUpdate, ImageUpload, Rating, validate_grade
from .ownership import ensure_can_mutate
from .ratings import RatingAggregator

logger = structlog.get_logger(__name__)


class BookService:
    """Book operations: creation, reads, owner-gated mutation, rating and ranking."""

    def __init__(self, store, storage, rating_max_attempts: int = 10):
        """
        Initialize book service.

        Args:
            store: Document store (see catalog.database.MongoDBManager)
            storage: Image storage (see catalog.storage.LocalImageStorage)
            rating_max_attempts: Conditional rating writes before giving up
        """
        self.store = store
        self.storage = storage
        self.ratings = RatingAggregator(store, max_attempts=rating_max_attempts)

    async def list_books(self) -> List[Book]:
        return await self.store.find_books()

    async def get_book(self, book_id: str) -> Book:
        """
        Get a single book.

        Raises:
            NotFoundError: if no book has this id
        """
        book = await self.store.find_book(book_id)
        if book is None:
            raise NotFoundError("Book not found")
        return book

    async def top_rated(self, limit: int = 3) -> List[Book]:
        """
        Best-rated books, highest ``average_rating`` first.

        Books with equal averages keep the store's natural order.
        """
        if limit < 1:
            raise InvalidInputError("limit must be at least 1", reason="invalid_limit")
        return await self.store.find_books(sort=[("average_rating", -1)], limit=limit)

    async def create_book(
        self,
        owner_id: str,
        fields: BookCreate,
        image: Optional[ImageUpload],
    ) -> Book:
        """
        Create a book owned by ``owner_id`` with the creator's grade as seed rating.

        The image is stored before the record is written, so a storage
        failure never leaves a book pointing at a missing image.

        Raises:
            InvalidInputError: missing or unsupported image, invalid creator grade
            StorageFailure: if the image cannot be stored
            PersistenceFailure: if the book cannot be saved
        """
        if image is None or not image.data:
            raise InvalidInputError("No image provided", reason="missing_image")

        grade = validate_grade(fields.rating if fields.rating is not None else 0)

        image_url = await self.storage.store(image)

        book = Book(
            owner_id=owner_id,
            title=fields.title,
            author=fields.author,
            year=fields.year,
            genre=fields.genre,
            image_url=image_url,
            ratings=[Rating(rater_id=owner_id, grade=grade)],
        )

        try:
            book.id = await self.store.insert_book(book)
        except CatalogError:
            await self._release_image(image_url)
            raise

        logger.info("Book created", book_id=book.id, owner_id=owner_id, average_rating=book.average_rating)
        return book

    async def update_book(
        self,
        book_id: str,
        requester_id: str,
        fields: BookUpdate,
        image: Optional[ImageUpload] = None,
    ) -> Book:
        """
        Apply an owner's changes to a book.

        Raises:
            NotFoundError: if the book does not exist
            ForbiddenError: if the requester is not the owner
            InvalidInputError: if the replacement image type is unsupported
            StorageFailure: if the replacement image cannot be stored
            PersistenceFailure: if the update cannot be saved
        """
        book = ensure_can_mutate(await self.store.find_book(book_id), requester_id, BookAction.UPDATE)

        patch = fields.to_patch()
        new_image_url = None
        if image is not None and image.data:
            new_image_url = await self.storage.store(image)
            patch["image_url"] = new_image_url

        if not patch:
            return book

        try:
            updated = await self.store.update_book(book_id, patch)
        except CatalogError:
            if new_image_url:
                await self._release_image(new_image_url)
            raise

        if not updated:
            if new_image_url:
                await self._release_image(new_image_url)
            raise NotFoundError("Book not found")

        if new_image_url:
            await self._release_image(book.image_url)

        logger.info("Book updated", book_id=book_id, fields=sorted(patch))
        return await self.get_book(book_id)

    async def delete_book(self, book_id: str, requester_id: str) -> None:
        """
        Delete an owner's book and release its image.

        Failing to remove the image file does not block removing the record.

        Raises:
            NotFoundError: if the book does not exist
            ForbiddenError: if the requester is not the owner
            PersistenceFailure: if the record cannot be deleted
        """
        book = ensure_can_mutate(await self.store.find_book(book_id), requester_id, BookAction.DELETE)

        await self._release_image(book.image_url)

        if not await self.store.delete_book(book_id):
            raise NotFoundError("Book not found")

        logger.info("Book deleted", book_id=book_id, owner_id=requester_id)

    async def rate_book(self, book_id: str, rater_id: str, grade: int) -> Book:
        """See RatingAggregator.submit_rating."""
        return await self.ratings.submit_rating(book_id, rater_id, grade)

    async def _release_image(self, image_url: str) -> None:
        try:
            await self.storage.delete(image_url)
        except StorageFailure as e:
            # Orphaned files are accepted; the catalog change goes ahead
            logger.warning("Failed to release image", image_url=image_url, error=str(e))
