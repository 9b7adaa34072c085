"""
Rating aggregation for books.

A rating is appended and the average recomputed from the full rating
history in memory, then written back with a conditional update on the
book's revision. When another rater got there first the write matches
nothing and the whole read-apply-write cycle is repeated against the
fresh document, so concurrent votes are neither lost nor counted twice.
"""

import structlog

from .errors import NotFoundError, PersistenceFailure
from .models import Book, validate_grade

logger = structlog.get_logger(__name__)


class RatingAggregator:
    """Applies one-vote-per-rater ratings to books stored in a document store."""

    def __init__(self, store, max_attempts: int = 10):
        """
        Initialize rating aggregator.

        Args:
            store: Book store offering find_book and replace_ratings
            max_attempts: Conditional writes to try before giving up
        """
        self.store = store
        self.max_attempts = max_attempts
        self.logger = logger.bind(component="rating_aggregator")

    async def submit_rating(self, book_id: str, rater_id: str, grade: int) -> Book:
        """
        Record ``rater_id``'s grade for a book.

        Args:
            book_id: Book identifier
            rater_id: Authenticated user id of the rater
            grade: Integer grade between 0 and 5

        Returns:
            The book as persisted, including the new rating

        Raises:
            InvalidInputError: if the grade is invalid
            NotFoundError: if the book does not exist
            ConflictError: if the rater already rated the book
            PersistenceFailure: if the store fails or contention never settles
        """
        validate_grade(grade)

        for attempt in range(1, self.max_attempts + 1):
            book = await self.store.find_book(book_id)
            if book is None:
                raise NotFoundError("Book not found")

            updated = book.with_rating(rater_id, grade)

            if await self.store.replace_ratings(updated, expected_revision=book.revision):
                self.logger.info(
                    "Rating recorded",
                    book_id=book_id,
                    rater_id=rater_id,
                    grade=grade,
                    average_rating=updated.average_rating,
                    ratings_count=len(updated.ratings),
                )
                return updated

            self.logger.info(
                "Concurrent rating update, retrying",
                book_id=book_id,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )

        self.logger.error("Rating not saved after retries", book_id=book_id, attempts=self.max_attempts)
        raise PersistenceFailure("Could not save rating, please retry")
