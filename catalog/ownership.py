"""
Ownership guard for book mutations.

Only the user recorded as a book's owner may update or delete it. Reads,
listings and ratings are never owner-gated.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .errors import ForbiddenError, NotFoundError
from .models import Book, BookAction


class Outcome(str, Enum):
    """Possible guard outcomes."""
    ALLOW = "allow"
    DENY = "deny"
    NOT_FOUND = "not_found"


class Decision(BaseModel):
    """Result of an ownership check."""
    outcome: Outcome = Field(..., description="Guard outcome")
    reason: Optional[str] = Field(None, description="Why the request was not allowed")

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW


def authorize(book: Optional[Book], requester_id: str, action: BookAction) -> Decision:
    """
    Decide whether ``requester_id`` may perform ``action`` on ``book``.

    A missing book is a failed precondition, reported as NOT_FOUND rather
    than DENY. This function has no side effects.

    Args:
        book: The already-loaded book, or None if it does not exist
        requester_id: Authenticated user id
        action: The mutation being attempted

    Returns:
        Decision with the outcome and, for non-allow outcomes, a reason
    """
    if book is None:
        return Decision(outcome=Outcome.NOT_FOUND, reason="book not found")
    if book.owner_id == requester_id:
        return Decision(outcome=Outcome.ALLOW)
    return Decision(outcome=Outcome.DENY, reason="not owner")


def ensure_can_mutate(book: Optional[Book], requester_id: str, action: BookAction) -> Book:
    """
    Raise unless the guard allows the mutation.

    Returns:
        The book, narrowed to non-None

    Raises:
        NotFoundError: if the book does not exist
        ForbiddenError: if the requester is not the owner
    """
    decision = authorize(book, requester_id, action)
    if decision.outcome == Outcome.NOT_FOUND:
        raise NotFoundError("Book not found")
    if decision.outcome == Outcome.DENY:
        raise ForbiddenError(f"Not allowed to {action.value} this book", reason="not_owner")
    return book
