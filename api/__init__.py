"""
FastAPI RESTful API for the Book Catalog.

This module provides a REST API for:
- User signup and bearer-token login
- Book catalog browsing and best-rated ranking
- Owner-only book updates and deletion
- One-vote-per-user book ratings
"""
