"""Rebuild the index documents of an entity type in bounded batches."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
import random
import time
from typing import Any

from search_mirror.adapters.record_store import RecordStore
from search_mirror.domain.model import ReindexResult
from search_mirror.errors import ConfigurationError, SyncFailure
from search_mirror.observability.context import bind_entity_type
from search_mirror.observability.tracing import create_span
from search_mirror.search.synchronizer import IndexSynchronizer


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


class BatchReindexer:
    """Walk every key of an entity type and re-synchronize its document.

    Only one page of keys is held at a time. A failing record is counted and
    skipped; the run never aborts on it. Configuration errors are not
    per-record and still propagate.
    """

    def __init__(
        self,
        store: RecordStore,
        synchronizer: IndexSynchronizer,
        *,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.store = store
        self.synchronizer = synchronizer
        self._sleep = sleep
        self._jitter = jitter

    def reindex_all(
        self,
        entity_type: str,
        conditions: Mapping[str, Any] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        throttle: float | None = None,
    ) -> ReindexResult:
        """Re-index every record of ``entity_type`` matching ``conditions``.

        Args:
            entity_type: Configured entity type to rebuild
            conditions: Optional equality / IN filter on the primary store
            page_size: Keys read per page, ordered by primary key
            throttle: When set, sleep a random ``[0, throttle]`` seconds
                between records

        Returns:
            ReindexResult with indexed/failed counts and pages read
        """
        if page_size < 1:
            raise ValueError("page_size must be positive")

        with bind_entity_type(entity_type):
            return self._run(entity_type, conditions, page_size, throttle)

    def _run(
        self,
        entity_type: str,
        conditions: Mapping[str, Any] | None,
        page_size: int,
        throttle: float | None,
    ) -> ReindexResult:
        primary_key = self.store.primary_key(entity_type)
        indexed = failed = pages = 0
        started = time.perf_counter()

        with create_span("search_mirror.reindex_all", attributes={"search_mirror.entity_type": entity_type}) as span:
            page = 1
            while True:
                keys = self.store.list_keys(entity_type, conditions, limit=page_size, page=page, order=primary_key)
                pages += 1
                for key in keys:
                    try:
                        self.synchronizer.sync_upsert(entity_type, key)
                        indexed += 1
                    except ConfigurationError:
                        raise
                    except SyncFailure as exc:
                        failed += 1
                        logger.warning("Re-index of %s %s failed: %s", entity_type, key, exc)
                    except Exception as exc:
                        failed += 1
                        logger.warning("Re-index of %s %s failed: %r", entity_type, key, exc, exc_info=True)
                    if throttle:
                        self._sleep(self._jitter(0, throttle))
                logger.debug("Re-index %s page %d: %d keys", entity_type, page, len(keys))
                if len(keys) < page_size:
                    break
                page += 1
            span.set_attribute("search_mirror.indexed", indexed)
            span.set_attribute("search_mirror.failed", failed)

        result = ReindexResult(indexed=indexed, failed=failed, pages=pages)
        logger.info("%s: %s in %.2fs", entity_type, result.summary(), time.perf_counter() - started)
        return result
