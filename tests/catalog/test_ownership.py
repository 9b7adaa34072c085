"""
Tests for the ownership guard.
"""

import pytest

from catalog.errors import ForbiddenError, NotFoundError
from catalog.models import BookAction
from catalog.ownership import Outcome, authorize, ensure_can_mutate


class TestAuthorize:
    """Test cases for the pure guard decision."""

    @pytest.mark.parametrize("action", list(BookAction))
    def test_owner_allowed(self, sample_book, action):
        decision = authorize(sample_book, "user-a", action)
        assert decision.outcome == Outcome.ALLOW
        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.parametrize("requester_id", ["user-b", "", "USER-A", "user-a "])
    def test_anyone_else_denied(self, sample_book, requester_id):
        """Test that only an exact owner id match is allowed."""
        decision = authorize(sample_book, requester_id, BookAction.UPDATE)
        assert decision.outcome == Outcome.DENY
        assert decision.reason == "not owner"
        assert decision.allowed is False

    def test_missing_book_is_not_found_not_deny(self):
        decision = authorize(None, "user-a", BookAction.DELETE)
        assert decision.outcome == Outcome.NOT_FOUND

    def test_rater_of_book_is_not_owner(self, sample_book):
        """Test that having rated a book grants no ownership."""
        rated = sample_book.with_rating("user-b", 5)
        assert authorize(rated, "user-b", BookAction.DELETE).outcome == Outcome.DENY


class TestEnsureCanMutate:
    """Test cases for the raising variant."""

    def test_returns_book_for_owner(self, sample_book):
        assert ensure_can_mutate(sample_book, "user-a", BookAction.UPDATE) is sample_book

    def test_raises_forbidden(self, sample_book):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_can_mutate(sample_book, "user-c", BookAction.DELETE)
        assert exc_info.value.kind == "forbidden"
        assert exc_info.value.status_code == 403

    def test_raises_not_found(self):
        with pytest.raises(NotFoundError):
            ensure_can_mutate(None, "user-a", BookAction.UPDATE)
