"""Exception hierarchy for the search mirror.

Deleting a document that is already gone and syncing a record without a key
are not errors; they are handled as successful no-ops by the synchronizer.
"""

from __future__ import annotations

from typing import Any


class SearchMirrorError(Exception):
    """Base class for all search mirror errors."""


class ConfigurationError(SearchMirrorError):
    """Raised when an entity type lacks the backend location it needs."""


class BackendError(SearchMirrorError):
    """Raised by a search backend when a request fails in transport or over HTTP."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncFailure(SearchMirrorError):
    """Raised when the backend rejects an index upsert or delete."""

    def __init__(self, message: str, *, entity_type: str, association_key: Any) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.association_key = association_key


class SearchFailure(SearchMirrorError):
    """Raised when a query is malformed or the backend cannot answer it."""
