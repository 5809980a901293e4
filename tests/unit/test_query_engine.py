"""Unit tests for QueryEngine against the in-memory backend."""

import logging

import pytest

from search_mirror.deployment_config import EntityIndexConfig
from search_mirror.domain.model import IndexDocument, SearchOptions
from search_mirror.errors import ConfigurationError, SearchFailure
from search_mirror.observability.logging import QUERY_LOGGER_NAME
from search_mirror.search.query_engine import QueryEngine
from search_mirror.search.synchronizer import IndexSynchronizer


pytestmark = pytest.mark.unit


@pytest.fixture
def engine(connections) -> QueryEngine:
    return QueryEngine(connections)


@pytest.fixture
def indexed(registry, store, connections, people):
    sync = IndexSynchronizer(registry, store, connections)
    for key in people.values():
        sync.sync_upsert("Person", key)
    article = store.save("Article", {"title": "First compiler", "body": "A history"})
    sync.sync_upsert("Article", article)
    return people


def test_search_returns_hits_in_relevance_order(engine, indexed):
    hits = engine.search("Person", "compiler")

    assert [hit.association_key for hit in hits] == [str(indexed["Grace"])]
    assert hits[0].score > 0
    assert hits[0].fields == {"association_key": str(indexed["Grace"])}


def test_search_is_scoped_to_entity_type(engine, indexed):
    assert engine.search_keys("Article", "compiler") == ["1"]
    assert sorted(engine.search_keys("Person", "first")) == sorted([str(indexed["Ada"]), str(indexed["Grace"])])


def test_blank_query_matches_every_document_of_the_type(engine, indexed):
    assert sorted(engine.search_keys("Person", "")) == sorted(str(key) for key in indexed.values())


def test_named_field_restricts_the_query(engine, indexed):
    assert engine.search_keys("Person", "person", {"field": "text"}) == []
    assert len(engine.search_keys("Person", "person", {"field": "entity_type"})) == 3


def test_options_limit_and_page(engine, indexed):
    everything = engine.search_keys("Person", "")

    assert engine.search_keys("Person", "", {"limit": 2}) == everything[:2]
    assert engine.search_keys("Person", "", SearchOptions(size=2, page=2)) == everything[2:]


def test_default_size_comes_from_entity_config(registry, engine, indexed):
    registry.register(EntityIndexConfig(entity_type="Person", table="people", index="site", limit=1))

    assert len(engine.search_keys("Person", "")) == 1


def test_full_documents(engine, indexed):
    [hit] = engine.search("Person", "compiler", SearchOptions(full_documents=True))

    assert hit.fields["text"] == "Grace . Hopper . Built the first compiler"
    assert hit.fields["entity_type"] == "Person"


def test_keys_with_score_keeps_relevance_order(engine, indexed):
    scores = engine.search_keys_with_score("Person", "first compiler")

    assert list(scores)[0] == str(indexed["Grace"])
    assert list(scores.values()) == sorted(scores.values(), reverse=True)


def test_keys_with_score_keeps_first_score_for_duplicate_keys(engine, connections, monkeypatch):
    backend = connections.setup_index("Person")
    hits = [
        {"_id": "a", "_score": 3.0, "association_key": ["7"]},
        {"_id": "b", "_score": 2.0, "association_key": "8"},
        {"_id": "c", "_score": 1.0, "association_key": "7"},
        {"_id": "d", "_score": 0.5},
    ]
    monkeypatch.setattr(backend, "search", lambda query, options: hits)

    assert engine.search_keys_with_score("Person", "x") == {"7": 3.0, "8": 2.0}
    assert engine.search_keys("Person", "x") == ["7", "8", "7"]


def test_find_document_is_an_exact_lookup(engine, indexed):
    document = engine.find_document("Person", indexed["Alan"])

    assert isinstance(document, IndexDocument)
    assert document.association_key == str(indexed["Alan"])
    assert document.id
    assert engine.find_document("Person", 999) is None
    assert engine.find_document("Article", indexed["Alan"]) is None


def test_wrapped_query_with_rescore_passes_through(engine, indexed):
    body = {
        "query": {"match": {"text": "first"}},
        "rescore": {
            "window_size": 10,
            "query": {"rescore_query": {"match_phrase": {"text": "first compiler"}}},
        },
    }

    assert engine.search_keys("Person", body)[0] == str(indexed["Grace"])


def test_malformed_query_raises_search_failure(engine, indexed):
    with pytest.raises(SearchFailure, match="Malformed"):
        engine.search("Person", 42)
    with pytest.raises(SearchFailure):
        engine.search("Person", {"nonsense": {}})


def test_invalid_options_raise_search_failure(engine, indexed):
    with pytest.raises(SearchFailure, match="Invalid search options"):
        engine.search("Person", "ada", {"page": 0})


def test_backend_failure_raises_search_failure(engine, indexed, cluster):
    cluster.unavailable = True

    with pytest.raises(SearchFailure):
        engine.search("Person", "ada")


def test_unknown_entity_type_is_a_configuration_error(engine):
    with pytest.raises(ConfigurationError):
        engine.search("Invoice", "ada")


def test_backend_request_is_logged(engine, indexed, caplog):
    with caplog.at_level(logging.DEBUG, logger=QUERY_LOGGER_NAME):
        engine.search("Person", "ada")

    assert any("site-people" in record.getMessage() for record in caplog.records if record.name == QUERY_LOGGER_NAME)
