"""Lazy, cached backend provisioning per entity type."""

from __future__ import annotations

from collections.abc import Callable
import logging
import threading

from search_mirror.adapters.elasticsearch_backend import ElasticsearchBackend
from search_mirror.adapters.search_backend import INDEX_MAPPING, SearchBackend
from search_mirror.config import Settings
from search_mirror.deployment_config import BackendLocation, IndexRegistry


logger = logging.getLogger(__name__)

BackendFactory = Callable[[BackendLocation], SearchBackend]


class IndexConnections:
    """Hand out provisioned backends, one per entity type.

    The first ``setup_index`` call for a physical index creates the index and
    installs the mapping; later calls reuse the cached backend. Configuration
    errors surface here, before any backend call.
    """

    def __init__(
        self,
        registry: IndexRegistry,
        backend_factory: BackendFactory,
        default_base_url: str = "http://127.0.0.1:9200",
    ) -> None:
        self.registry = registry
        self.default_base_url = default_base_url
        self._backend_factory = backend_factory
        self._backends: dict[str, SearchBackend] = {}
        self._provisioned: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, registry: IndexRegistry, settings: Settings) -> IndexConnections:
        return cls(
            registry,
            lambda location: ElasticsearchBackend.from_settings(location, settings),
            settings.search_backend_url,
        )

    def location(self, entity_type: str) -> BackendLocation:
        return self.registry.get(entity_type).location(self.default_base_url)

    def setup_index(self, entity_type: str) -> SearchBackend:
        """Return the backend for an entity type, provisioning its index once."""
        backend = self._backends.get(entity_type)
        if backend is not None:
            return backend

        location = self.location(entity_type)
        with self._lock:
            backend = self._backends.get(entity_type)
            if backend is not None:
                return backend
            backend = self._backend_factory(location)
            if location.physical_index not in self._provisioned:
                logger.info("Provisioning index %s for %s", location.physical_index, entity_type)
                backend.create_index(location.physical_index)
                backend.create_mapping(INDEX_MAPPING)
                self._provisioned.add(location.physical_index)
            self._backends[entity_type] = backend
        return backend

    def is_provisioned(self, entity_type: str) -> bool:
        return self.location(entity_type).physical_index in self._provisioned

    def close(self) -> None:
        for backend in self._backends.values():
            close = getattr(backend, "close", None)
            if close is not None:
                close()
        self._backends.clear()
