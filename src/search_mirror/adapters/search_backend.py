"""Search backend abstraction.

A backend instance is bound to one ``BackendLocation`` (one physical index)
and speaks a small subset of the Elasticsearch query DSL. Hits come back
flattened: ``{"_id": ..., "_score": ..., **source_fields}``.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from search_mirror.deployment_config import BackendLocation
from search_mirror.domain.model import SearchOptions


# At-rest shape of an index document.
INDEX_MAPPING: dict[str, dict[str, Any]] = {
    "association_key": {"type": "keyword", "store": True},
    "entity_type": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
    "text": {"type": "text"},
    "created_at": {"type": "date", "format": "yyyy-MM-dd HH:mm:ss||yyyy/MM/dd"},
    "modified_at": {"type": "date", "format": "yyyy-MM-dd HH:mm:ss||yyyy/MM/dd"},
}

# Fields searched when the caller does not name one; entity_type is weighted
# low so it does not dominate term-frequency ranking.
DEFAULT_SEARCH_FIELDS: tuple[str, ...] = ("text", "entity_type^0.2")


class SearchBackend(ABC):
    """Index document storage and search for one backend location."""

    location: BackendLocation

    @abstractmethod
    def create_index(self, name: str, config: Mapping[str, Any] | None = None) -> bool:
        """Create the index if missing. Must succeed when it already exists."""
        raise NotImplementedError

    @abstractmethod
    def create_mapping(self, schema: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> bool:
        """Install the field mapping. Must be safe to repeat."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, doc_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_record(self, doc: Mapping[str, Any]) -> str | None:
        """Store a new document and return its backend id."""
        raise NotImplementedError

    @abstractmethod
    def update_record(self, doc_id: str, doc: Mapping[str, Any]) -> str | None:
        """Replace the document stored under ``doc_id`` and return the id."""
        raise NotImplementedError

    @abstractmethod
    def delete_record(self, doc_id: str) -> bool:
        """Delete a document; False means it was not found."""
        raise NotImplementedError

    @abstractmethod
    def search(self, query: Mapping[str, Any], options: SearchOptions) -> list[dict[str, Any]]:
        """Run a wrapped query (``{"query": ..., "rescore": ...}``) and return flattened hits.

        ``options.size`` is already resolved by the caller.
        """
        raise NotImplementedError

    def describe_last_request(self) -> str | None:
        """Optional hook returning a printable form of the last request, for query logs."""

        return None


def build_source_filter(options: SearchOptions) -> list[str] | bool:
    """Projection requested from the backend: keys only unless documents are wanted."""
    if options.full_documents:
        return True
    return ["association_key"]
