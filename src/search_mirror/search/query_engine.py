"""Issue searches against an entity type's index and translate the hits."""

from __future__ import annotations

from collections.abc import Mapping
import logging
import time
from typing import Any

from search_mirror.domain.model import IndexDocument, SearchHit, SearchOptions
from search_mirror.errors import BackendError, SearchFailure
from search_mirror.observability.logging import QUERY_LOGGER_NAME
from search_mirror.observability.metrics import SEARCH_LATENCY, track_latency
from search_mirror.observability.tracing import create_span
from search_mirror.search.connections import IndexConnections
from search_mirror.search.query_builder import exact_lookup_query, scope_to_entity, wrap_query


logger = logging.getLogger(__name__)
query_logger = logging.getLogger(QUERY_LOGGER_NAME)

SearchQuery = str | Mapping[str, Any]


class QueryEngine:
    """Read-only access to the index documents of every configured entity type."""

    def __init__(self, connections: IndexConnections) -> None:
        self.connections = connections

    def search(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> list[SearchHit]:
        """Search one entity type and return hits in relevance order.

        Args:
            entity_type: Entity type whose documents are searched
            query: Query text, or a query DSL mapping (wrapped when it has no
                top-level ``query`` key)
            options: ``SearchOptions`` or a mapping of its fields

        Raises:
            SearchFailure: If the query is malformed or the backend fails
        """
        hits = []
        for raw in self._raw_search(entity_type, query, options):
            key = _association_key(raw)
            if key is None:
                logger.debug("Skipping %s hit %s without association key", entity_type, raw.get("_id"))
                continue
            fields = {name: value for name, value in raw.items() if name not in ("_id", "_score")}
            hits.append(SearchHit(association_key=key, score=raw.get("_score"), id=raw.get("_id"), fields=fields))
        return hits

    def search_keys(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Return the association keys of the hits, best match first."""
        return [hit.association_key for hit in self.search(entity_type, query, options)]

    def search_keys_with_score(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, float | None]:
        """Return ``{association_key: score}`` in relevance order.

        Keys are expected to be unique per query; if the backend repeats one,
        the first (highest ranked) score wins.
        """
        scores: dict[str, float | None] = {}
        for hit in self.search(entity_type, query, options):
            if hit.association_key in scores:
                logger.debug("Duplicate association key %s in %s hits", hit.association_key, entity_type)
                continue
            scores[hit.association_key] = hit.score
        return scores

    def find_document(self, entity_type: str, association_key: Any) -> IndexDocument | None:
        """Exact lookup of the document mirroring one record, or None."""
        hits = self._execute(
            entity_type,
            exact_lookup_query(entity_type, association_key),
            SearchOptions(size=1, full_documents=True),
        )
        if not hits:
            return None
        return IndexDocument.from_hit(hits[0])

    # --- internal helpers -------------------------------------------------

    def _raw_search(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None,
    ) -> list[dict[str, Any]]:
        resolved = self._resolve_options(entity_type, options)
        try:
            body = scope_to_entity(wrap_query(query, resolved.field), entity_type)
        except (TypeError, ValueError) as exc:
            raise SearchFailure(f"Malformed query for {entity_type}: {exc}") from exc
        return self._execute(entity_type, body, resolved)

    def _resolve_options(
        self,
        entity_type: str,
        options: SearchOptions | Mapping[str, Any] | None,
    ) -> SearchOptions:
        if options is None:
            options = SearchOptions()
        elif not isinstance(options, SearchOptions):
            try:
                options = SearchOptions.model_validate(dict(options))
            except ValueError as exc:
                raise SearchFailure(f"Invalid search options for {entity_type}: {exc}") from exc
        if options.size is None:
            options = options.model_copy(update={"size": self.connections.registry.get(entity_type).limit})
        return options

    def _execute(self, entity_type: str, body: dict[str, Any], options: SearchOptions) -> list[dict[str, Any]]:
        start = time.perf_counter()
        attributes = {"search_mirror.entity_type": entity_type, "search_mirror.size": options.size}
        with create_span("search_mirror.search", attributes=attributes) as span:
            with track_latency(SEARCH_LATENCY, entity_type=entity_type):
                backend = None
                try:
                    backend = self.connections.setup_index(entity_type)
                    hits = backend.search(body, options)
                except BackendError as exc:
                    raise SearchFailure(f"Search on {entity_type} failed: {exc}") from exc
                finally:
                    if backend is not None:
                        query_logger.debug("%s", backend.describe_last_request())
            span.set_attribute("search_mirror.hits", len(hits))

        logger.debug(
            "Search on %s returned %d hits in %.3fs",
            entity_type,
            len(hits),
            time.perf_counter() - start,
        )
        return hits


def _association_key(hit: Mapping[str, Any]) -> str | None:
    key = hit.get("association_key")
    if isinstance(key, list):
        key = key[0] if key else None
    if key is None or key == "":
        return None
    return str(key)
