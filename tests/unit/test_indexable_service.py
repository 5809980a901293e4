"""Unit tests for the host-facing IndexableService."""

import logging

import pytest

from search_mirror.adapters.record_store import SqliteRecordStore
from search_mirror.config import Settings
from search_mirror.deployment_config import EntityIndexConfig
from search_mirror.domain.model import FlushResult, SearchOptions, SyncAction
from search_mirror.errors import SyncFailure
from search_mirror.search.connections import IndexConnections
from search_mirror.service_layer.indexable_service import IndexableService


pytestmark = pytest.mark.unit


def _index_people(service, people):
    for key in people.values():
        service.after_save("Person", key)


class TestWriteHooks:
    def test_after_save_indexes_record(self, service, people, cluster, connections):
        assert service.after_save("Person", people["Ada"]) is SyncAction.CREATED
        assert service.after_save("Person", people["Ada"]) is SyncAction.UPDATED

    def test_after_save_falls_back_to_last_inserted_key(self, service, store):
        key = store.save("Person", {"first_name": "Katherine", "last_name": "Johnson"})

        assert service.after_save("Person") is SyncAction.CREATED
        assert service.search_keys("Person", "katherine") == [str(key)]

    def test_after_save_respects_rebuild_on_update(self, service, registry, people, cluster):
        registry.register(EntityIndexConfig(entity_type="Person", table="people", index="site", rebuild_on_update=False))

        assert service.after_save("Person", people["Ada"]) is SyncAction.SKIPPED
        assert cluster.provision_calls == []

    def test_after_delete(self, service, store, people):
        service.after_save("Person", people["Ada"])
        store.delete("Person", people["Ada"])

        assert service.after_delete("Person", people["Ada"]) is SyncAction.DELETED
        assert service.search_keys("Person", "ada") == []

    def test_update_replaces_indexed_text(self, service, store, people):
        service.after_save("Person", people["Alan"])
        store.save("Person", {"id": people["Alan"], "bio": "Designed the ACE"})
        service.after_save("Person", people["Alan"])

        assert service.search_keys("Person", "ciphers") == []
        assert service.search_keys("Person", "ace") == [str(people["Alan"])]

    def test_record_without_text_leaves_no_document(self, service, store, cluster, connections):
        key = store.save("Person", {"age": 3})

        assert service.after_save("Person", key) is SyncAction.SKIPPED
        assert cluster.documents(connections.location("Person")) == {}

    def test_strict_policy_raises(self, service, people, cluster):
        cluster.reject_writes = True

        with pytest.raises(SyncFailure):
            service.after_save("Person", people["Ada"])

    def test_best_effort_policy_logs_and_continues(self, service, registry, people, cluster, caplog):
        registry.register(
            EntityIndexConfig(entity_type="Person", table="people", index="site", index_failure_policy="best-effort")
        )
        cluster.unavailable = True

        with caplog.at_level(logging.WARNING):
            assert service.after_save("Person", people["Ada"]) is SyncAction.SKIPPED
            assert service.after_delete("Person", people["Ada"]) is SyncAction.SKIPPED

        assert "best-effort" in caplog.text

    def test_deferred_writes_flush(self, service, registry, people, cluster, connections):
        registry.register(EntityIndexConfig(entity_type="Person", table="people", index="site", deferred_writes=True))

        assert service.after_save("Person", people["Ada"]) is SyncAction.QUEUED
        assert service.flush() == FlushResult(executed=1, failed=0)
        assert len(cluster.documents(connections.location("Person"))) == 1


class TestSearch:
    def test_returns_records_in_relevance_order(self, service, store, people):
        store.save("Person", {"id": people["Ada"], "bio": "compiler compiler compiler notes"})
        _index_people(service, people)

        records = service.search("Person", "compiler")

        assert [record["first_name"] for record in records] == ["Ada", "Grace"]

    def test_no_hits_skips_the_store(self, service, people, monkeypatch):
        _index_people(service, people)
        monkeypatch.setattr(service.store, "find_all", lambda *args, **kwargs: pytest.fail("store queried"))

        assert service.search("Person", "zebra") == []

    def test_find_options_shape_the_store_query(self, service, people):
        _index_people(service, people)

        records = service.search(
            "Person",
            "first",
            find_options={"fields": ["id", "first_name"], "conditions": {"age": 85}},
        )

        assert records == [{"id": people["Grace"], "first_name": "Grace"}]

    def test_find_options_limit_pages_the_index_query(self, service, people):
        _index_people(service, people)

        first_page = service.search("Person", "", find_options={"limit": 2})
        second_page = service.search("Person", "", find_options={"limit": 2, "page": 2})

        assert len(first_page) == 2
        assert len(second_page) == 1
        assert {r["id"] for r in first_page + second_page} == set(people.values())

    def test_search_options_override_find_options(self, service, people):
        _index_people(service, people)

        records = service.search("Person", "", find_options={"limit": 1}, search_options=SearchOptions(size=3))

        assert len(records) == 3

    def test_proximity_query_through_search(self, service, people):
        _index_people(service, people)

        query = service.build_proximity_query("first compiler", field="text")

        assert service.search("Person", query)[0]["first_name"] == "Grace"

    def test_keys_with_score(self, service, people):
        _index_people(service, people)

        scores = service.search_keys_with_score("Person", "turing")

        assert list(scores) == [str(people["Alan"])]
        assert scores[str(people["Alan"])] > 0

    def test_fuzzyize(self, service):
        assert service.fuzzyize("a b") == r"a\s*b"

    def test_primary_key_comes_from_the_table(self, connection, registry, connections):
        connection.execute("CREATE TABLE tags (uuid TEXT PRIMARY KEY, label TEXT)")
        registry.register(EntityIndexConfig(entity_type="Tag", table="tags", index="site"))
        store = SqliteRecordStore.from_registry(connection, registry)
        service = IndexableService(registry, store, connections)
        store.save("Tag", {"uuid": "c0ffee", "label": "Compilers"})

        assert service.after_save("Tag", "c0ffee") is SyncAction.CREATED
        assert service.search("Tag", "compilers") == [{"uuid": "c0ffee", "label": "Compilers"}]
        assert service.search_keys("Tag", "c0ffee") == []


class TestMaintenance:
    def test_reindex_all_uses_configured_page_size(self, registry, store, connections, people):
        service = IndexableService(registry, store, connections, reindex_page_size=2)

        result = service.reindex_all("Person")

        assert result.indexed == 3
        assert result.pages == 2

    def test_from_settings_wires_elasticsearch(self, registry, store):
        service = IndexableService.from_settings(registry, store, Settings(_env_file=None, reindex_page_size=50))

        assert isinstance(service.connections, IndexConnections)
        assert service.connections.default_base_url == "http://127.0.0.1:9200"
        assert service.reindex_page_size == 50
