"""
Core domain for the book catalog.

This package contains:
- Book and User models with the one-vote-per-rater invariant
- The ownership guard for update/delete
- The rating aggregator with optimistic concurrency
- MongoDB persistence and local cover image storage
"""
