# =============================================
# File: app/services/errors.py
# Purpose: Exception types shared by the search components
# =============================================
from __future__ import annotations


class SearchError(Exception):
    """Base class for search subsystem errors."""


class InvalidQueryError(SearchError, ValueError):
    """Client-visible validation failure (bad pagination, malformed geo filter, ...)."""


class DimensionMismatchError(SearchError, ValueError):
    """Two vectors with different dimensions were compared. Programming error."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vector dimension mismatch: {left} != {right}")
        self.left = left
        self.right = right


class EmbeddingServiceError(SearchError):
    """The external embedding service failed, timed out or returned garbage."""


class CacheUnavailableError(SearchError):
    """The key-value store could not be reached."""
