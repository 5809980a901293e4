"""Keep exactly one index document per record in step with the primary store.

The synchronizer is the only component that writes index documents. Each
call re-derives the index text from the record and then creates, updates or
deletes the mirrored document so that an empty text never leaves a document
behind.
"""

from __future__ import annotations

from collections import deque
import logging
import threading
from typing import Any

from search_mirror.adapters.record_store import RecordStore
from search_mirror.deployment_config import EntityIndexConfig, IndexRegistry
from search_mirror.domain.model import FlushResult, IndexDocument, IndexTask, SyncAction, TaskKind, utc_timestamp
from search_mirror.errors import BackendError, SearchFailure, SyncFailure
from search_mirror.observability.context import bind_entity_type
from search_mirror.observability.metrics import INDEX_WRITES, SYNC_FAILURES
from search_mirror.observability.tracing import create_span
from search_mirror.search.connections import IndexConnections
from search_mirror.search.extractor import FieldExtractor
from search_mirror.search.query_engine import QueryEngine


logger = logging.getLogger(__name__)


class DeferredWriteQueue:
    """FIFO of index writes waiting for an explicit flush.

    Tasks for the same key are never merged; each one runs in enqueue order.
    """

    def __init__(self) -> None:
        self._tasks: deque[IndexTask] = deque()
        self._lock = threading.Lock()

    def append(self, task: IndexTask) -> None:
        with self._lock:
            self._tasks.append(task)

    def pop(self) -> IndexTask | None:
        with self._lock:
            return self._tasks.popleft() if self._tasks else None

    def pending(self) -> list[IndexTask]:
        with self._lock:
            return list(self._tasks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)


class IndexSynchronizer:
    """Mirror primary-store writes and deletes into the search backend."""

    def __init__(
        self,
        registry: IndexRegistry,
        store: RecordStore,
        connections: IndexConnections,
        query_engine: QueryEngine | None = None,
        extractor: FieldExtractor | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.connections = connections
        self.query_engine = query_engine or QueryEngine(connections)
        self.extractor = extractor or FieldExtractor()
        self.queue = DeferredWriteQueue()
        self._column_types: dict[str, dict[str, str]] = {}
        self._flush_lock = threading.Lock()

    # --- public API ---------------------------------------------------------

    def sync_upsert(self, entity_type: str, association_key: Any, record: dict[str, Any] | None = None) -> SyncAction:
        """Create, update or delete the document mirroring one record.

        Args:
            entity_type: Configured entity type of the record
            association_key: Primary key of the record; empty means nothing to do
            record: The record as the caller has it; re-read from the store
                when ``query_after_save`` is set or no record is given

        Raises:
            SyncFailure: If the backend rejects the write
        """
        if association_key is None or association_key == "":
            logger.debug("Skipping %s upsert without a key", entity_type)
            return SyncAction.SKIPPED

        config = self.registry.get(entity_type)
        with bind_entity_type(entity_type):
            if config.query_after_save or record is None:
                record = self._load_record(config, association_key)

            text = self.extractor.extract(
                record,
                config,
                self._get_column_types(entity_type),
                self.store.primary_key(entity_type),
            )
            key = str(association_key)
            if config.deferred_writes:
                self.queue.append(IndexTask(TaskKind.UPSERT, entity_type, key, text))
                logger.debug("Queued upsert of %s %s", entity_type, key)
                return SyncAction.QUEUED
            return self._write(entity_type, key, text)

    def sync_delete(self, entity_type: str, association_key: Any) -> SyncAction:
        """Remove the document mirroring a deleted record; missing documents are fine."""
        if association_key is None or association_key == "":
            logger.debug("Skipping %s delete without a key", entity_type)
            return SyncAction.SKIPPED

        config = self.registry.get(entity_type)
        key = str(association_key)
        with bind_entity_type(entity_type):
            if config.deferred_writes:
                self.queue.append(IndexTask(TaskKind.DELETE, entity_type, key))
                logger.debug("Queued delete of %s %s", entity_type, key)
                return SyncAction.QUEUED
            return self._delete(entity_type, key)

    def flush(self) -> FlushResult:
        """Run every queued write in order; failures are logged and counted, never re-queued."""
        executed = failed = 0
        with self._flush_lock:
            while (task := self.queue.pop()) is not None:
                with bind_entity_type(task.entity_type):
                    try:
                        if task.kind is TaskKind.UPSERT:
                            self._write(task.entity_type, task.association_key, task.text)
                        else:
                            self._delete(task.entity_type, task.association_key)
                        executed += 1
                    except SyncFailure as exc:
                        failed += 1
                        logger.error(
                            "Deferred %s of %s %s failed: %s",
                            task.kind.value,
                            task.entity_type,
                            task.association_key,
                            exc,
                        )
        if executed or failed:
            logger.info("Flushed deferred index writes: %d executed, %d failed", executed, failed)
        return FlushResult(executed=executed, failed=failed)

    # --- internal helpers -------------------------------------------------

    def _load_record(self, config: EntityIndexConfig, association_key: Any) -> dict[str, Any] | None:
        if config.data_loader is not None:
            record = config.data_loader(association_key)
        else:
            record = self.store.read_by_key(config.entity_type, association_key)
        if record is None:
            logger.debug("No %s record found for key %s", config.entity_type, association_key)
            return None
        return dict(record)

    def _get_column_types(self, entity_type: str) -> dict[str, str]:
        if entity_type not in self._column_types:
            self._column_types[entity_type] = self.store.column_types(entity_type)
        return self._column_types[entity_type]

    def _write(self, entity_type: str, key: str, text: str) -> SyncAction:
        with create_span("search_mirror.index_write", attributes={"search_mirror.entity_type": entity_type}):
            try:
                existing = self.query_engine.find_document(entity_type, key)
                backend = self.connections.setup_index(entity_type)
                if not text:
                    if existing is None or not existing.id:
                        action = SyncAction.SKIPPED
                    else:
                        backend.delete_record(existing.id)
                        action = SyncAction.DELETED
                else:
                    now = utc_timestamp()
                    if existing is not None and existing.id and backend.exists(existing.id):
                        document = IndexDocument(
                            id=existing.id,
                            entity_type=entity_type,
                            association_key=key,
                            text=text,
                            created_at=existing.created_at,
                            modified_at=now,
                        )
                        doc_id = backend.update_record(existing.id, document.to_source())
                        action = SyncAction.UPDATED
                    else:
                        document = IndexDocument(
                            entity_type=entity_type,
                            association_key=key,
                            text=text,
                            created_at=now,
                            modified_at=now,
                        )
                        doc_id = backend.create_record(document.to_source())
                        action = SyncAction.CREATED
                    if not doc_id:
                        raise self._failure(entity_type, key, "backend returned no document id")
            except (BackendError, SearchFailure) as exc:
                raise self._failure(entity_type, key, str(exc)) from exc

        INDEX_WRITES.labels(entity_type=entity_type, action=action.value).inc()
        logger.debug("Index %s %s: %s", entity_type, key, action.value)
        return action

    def _delete(self, entity_type: str, key: str) -> SyncAction:
        with create_span("search_mirror.index_delete", attributes={"search_mirror.entity_type": entity_type}):
            try:
                existing = self.query_engine.find_document(entity_type, key)
                if existing is None or not existing.id:
                    return SyncAction.SKIPPED
                backend = self.connections.setup_index(entity_type)
                if not backend.delete_record(existing.id):
                    logger.debug("Index document %s for %s %s was already gone", existing.id, entity_type, key)
            except (BackendError, SearchFailure) as exc:
                raise self._failure(entity_type, key, str(exc)) from exc

        INDEX_WRITES.labels(entity_type=entity_type, action=SyncAction.DELETED.value).inc()
        return SyncAction.DELETED

    def _failure(self, entity_type: str, key: str, reason: str) -> SyncFailure:
        SYNC_FAILURES.labels(entity_type=entity_type).inc()
        return SyncFailure(
            f"Failed to index {entity_type} {key}: {reason}",
            entity_type=entity_type,
            association_key=key,
        )
