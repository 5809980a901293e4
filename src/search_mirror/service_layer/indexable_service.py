"""Host-facing facade: save/delete hooks, search-then-fetch and re-indexing.

A host application calls ``after_save`` / ``after_delete`` from its own
persistence hooks and ``search`` wherever it would otherwise run a primary
store query. Nothing here is registered globally; the host owns the service
and decides when to ``flush`` deferred writes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any

from search_mirror.adapters.record_store import RecordStore
from search_mirror.config import Settings
from search_mirror.deployment_config import EntityIndexConfig, IndexRegistry
from search_mirror.domain.model import ALL_FIELDS, FlushResult, ReindexResult, SearchOptions, SyncAction
from search_mirror.errors import SyncFailure
from search_mirror.search.connections import IndexConnections
from search_mirror.search.extractor import FieldExtractor
from search_mirror.search.query_builder import build_proximity_query, fuzzyize
from search_mirror.search.query_engine import QueryEngine, SearchQuery
from search_mirror.search.reconciler import reconcile
from search_mirror.search.reindexer import BatchReindexer
from search_mirror.search.synchronizer import IndexSynchronizer


logger = logging.getLogger(__name__)

# find_options keys that also shape the index query
_PAGING_KEYS = ("limit", "page")


class IndexableService:
    """Mirror one primary store into the search backend and search it."""

    def __init__(
        self,
        registry: IndexRegistry,
        store: RecordStore,
        connections: IndexConnections,
        *,
        extractor: FieldExtractor | None = None,
        reindex_page_size: int = 500,
    ) -> None:
        self.registry = registry
        self.store = store
        self.connections = connections
        self.query_engine = QueryEngine(connections)
        self.synchronizer = IndexSynchronizer(registry, store, connections, self.query_engine, extractor)
        self.reindexer = BatchReindexer(store, self.synchronizer)
        self.reindex_page_size = reindex_page_size

    @classmethod
    def from_settings(cls, registry: IndexRegistry, store: RecordStore, settings: Settings) -> IndexableService:
        """Wire the service against Elasticsearch using process settings."""
        return cls(
            registry,
            store,
            IndexConnections.from_settings(registry, settings),
            reindex_page_size=settings.reindex_page_size,
        )

    # --- write hooks --------------------------------------------------------

    def after_save(self, entity_type: str, key: Any = None, record: Mapping[str, Any] | None = None) -> SyncAction:
        """Mirror a saved record; call after the primary-store write committed.

        When ``key`` is omitted the store's last inserted key is used.
        """
        config = self.registry.get(entity_type)
        if not config.rebuild_on_update:
            return SyncAction.SKIPPED
        if key is None or key == "":
            key = self.store.last_inserted_key(entity_type)
        try:
            return self.synchronizer.sync_upsert(entity_type, key, dict(record) if record is not None else None)
        except SyncFailure as exc:
            return self._handle_failure(config, exc)

    def after_delete(self, entity_type: str, key: Any) -> SyncAction:
        """Drop the document of a deleted record."""
        config = self.registry.get(entity_type)
        try:
            return self.synchronizer.sync_delete(entity_type, key)
        except SyncFailure as exc:
            return self._handle_failure(config, exc)

    def flush(self) -> FlushResult:
        return self.synchronizer.flush()

    # --- search -------------------------------------------------------------

    def search(
        self,
        entity_type: str,
        query: SearchQuery,
        find_options: Mapping[str, Any] | None = None,
        search_options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Search the index, then load the matching records in relevance order.

        Args:
            entity_type: Entity type to search
            query: Query text or query DSL mapping
            find_options: Primary-store options (``conditions``, ``fields``,
                ``order``); ``limit`` and ``page`` page the index query
            search_options: Index query options, overriding ``limit``/``page``

        Returns:
            Records from the primary store, best match first
        """
        find_options = dict(find_options or {})
        options = self._merge_options(find_options, search_options)

        keys = self.query_engine.search_keys(entity_type, query, options)
        if not keys:
            return []

        conditions = dict(find_options.get("conditions") or {})
        primary_key = self.store.primary_key(entity_type)
        conditions[primary_key] = keys
        records = self.store.find_all(
            entity_type,
            conditions,
            fields=find_options.get("fields"),
            order=find_options.get("order"),
        )
        return reconcile(records, keys, lambda record: record.get(primary_key))

    def search_keys(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> list[str]:
        return self.query_engine.search_keys(entity_type, query, options)

    def search_keys_with_score(
        self,
        entity_type: str,
        query: SearchQuery,
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, float | None]:
        return self.query_engine.search_keys_with_score(entity_type, query, options)

    def build_proximity_query(
        self,
        terms: str | Sequence[str],
        field: str = ALL_FIELDS,
        window_size: int = 50,
        slop: int = 50,
    ) -> dict[str, Any]:
        return build_proximity_query(terms, field=field, window_size=window_size, slop=slop)

    @staticmethod
    def fuzzyize(query: str) -> str:
        return fuzzyize(query)

    # --- maintenance --------------------------------------------------------

    def reindex_all(
        self,
        entity_type: str,
        conditions: Mapping[str, Any] | None = None,
        page_size: int | None = None,
        throttle: float | None = None,
    ) -> ReindexResult:
        return self.reindexer.reindex_all(
            entity_type,
            conditions,
            page_size=page_size or self.reindex_page_size,
            throttle=throttle,
        )

    # --- internal helpers -------------------------------------------------

    def _merge_options(
        self,
        find_options: Mapping[str, Any],
        search_options: SearchOptions | Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        merged = {key: find_options[key] for key in _PAGING_KEYS if find_options.get(key) is not None}
        if isinstance(search_options, SearchOptions):
            merged.update(search_options.model_dump(exclude_unset=True))
        elif search_options:
            merged.update(search_options)
        if "size" in merged and "limit" in merged:
            merged.pop("limit")
        return merged

    def _handle_failure(self, config: EntityIndexConfig, exc: SyncFailure) -> SyncAction:
        if config.index_failure_policy == "strict":
            raise exc
        logger.warning(
            "Index write for %s %s failed, continuing (best-effort): %s",
            exc.entity_type,
            exc.association_key,
            exc,
        )
        return SyncAction.SKIPPED
