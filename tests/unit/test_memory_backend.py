"""Unit tests for the in-memory search backend simulator."""

import pytest

from search_mirror.adapters.memory_backend import InMemorySearchCluster
from search_mirror.adapters.search_backend import INDEX_MAPPING
from search_mirror.deployment_config import BackendLocation
from search_mirror.domain.model import SearchOptions
from search_mirror.errors import BackendError


pytestmark = pytest.mark.unit

LOCATION = BackendLocation(base_url="memory://", index="site", table="people")


def _doc(key: str, text: str, entity_type: str = "Person") -> dict[str, str]:
    return {
        "entity_type": entity_type,
        "association_key": key,
        "text": text,
        "created_at": "2024-01-01 00:00:00",
        "modified_at": "2024-01-01 00:00:00",
    }


@pytest.fixture
def cluster() -> InMemorySearchCluster:
    return InMemorySearchCluster()


@pytest.fixture
def backend(cluster):
    backend = cluster.backend(LOCATION)
    backend.create_index(LOCATION.physical_index)
    backend.create_mapping(INDEX_MAPPING)
    return backend


def _keys(hits):
    return [hit["association_key"] for hit in hits]


class TestDocuments:
    def test_writes_require_a_provisioned_index(self, cluster):
        backend = cluster.backend(LOCATION)

        with pytest.raises(BackendError) as excinfo:
            backend.create_record(_doc("1", "hello"))

        assert excinfo.value.status_code == 404

    def test_provisioning_is_idempotent(self, cluster, backend):
        doc_id = backend.create_record(_doc("1", "hello"))

        backend.create_index(LOCATION.physical_index)
        backend.create_mapping(INDEX_MAPPING)

        assert backend.exists(doc_id)

    def test_create_update_delete(self, cluster, backend):
        doc_id = backend.create_record(_doc("1", "hello"))

        assert backend.exists(doc_id)
        assert backend.update_record(doc_id, _doc("1", "goodbye")) == doc_id
        assert cluster.documents(LOCATION)[doc_id]["text"] == "goodbye"
        assert backend.delete_record(doc_id) is True
        assert backend.delete_record(doc_id) is False
        assert not backend.exists(doc_id)

    def test_rejected_writes_return_no_id(self, cluster, backend):
        cluster.reject_writes = True

        assert backend.create_record(_doc("1", "hello")) is None
        assert cluster.documents(LOCATION) == {}

    def test_unavailable_cluster_raises(self, cluster, backend):
        cluster.unavailable = True

        with pytest.raises(BackendError):
            backend.search({"query": {"match_all": {}}}, SearchOptions())


class TestSearch:
    @pytest.fixture(autouse=True)
    def _corpus(self, backend):
        backend.create_record(_doc("1", "quick brown fox"))
        backend.create_record(_doc("2", "quick cat"))
        backend.create_record(_doc("3", "slow dog"))
        backend.create_record(_doc("9", "quick article", entity_type="Article"))

    def test_match_ranks_documents_with_more_terms_first(self, backend):
        hits = backend.search({"query": {"match": {"text": "quick fox"}}}, SearchOptions())

        assert _keys(hits)[:2] == ["1", "2"]
        assert "3" not in _keys(hits)
        assert hits[0]["_score"] > hits[1]["_score"]

    def test_match_with_and_operator_requires_every_term(self, backend):
        hits = backend.search({"query": {"match": {"text": {"query": "quick fox", "operator": "and"}}}}, SearchOptions())

        assert _keys(hits) == ["1"]

    def test_term_filter_scopes_to_entity_type(self, backend):
        query = {
            "query": {
                "bool": {
                    "must": [{"match": {"text": "quick"}}],
                    "filter": [{"term": {"entity_type.raw": "Article"}}],
                }
            }
        }

        assert _keys(backend.search(query, SearchOptions())) == ["9"]

    def test_exact_association_key_lookup(self, backend):
        query = {"query": {"bool": {"filter": [{"term": {"association_key": "2"}}]}}}

        hits = backend.search(query, SearchOptions(full_documents=True))

        assert len(hits) == 1
        assert hits[0]["text"] == "quick cat"

    def test_query_string_supports_field_syntax(self, backend):
        hits = backend.search({"query": {"query_string": {"query": "association_key:3"}}}, SearchOptions())

        assert _keys(hits) == ["3"]

    def test_query_string_over_default_fields(self, backend):
        query = {"query": {"query_string": {"query": "dog OR fox", "fields": ["text", "entity_type^0.2"]}}}

        assert sorted(_keys(backend.search(query, SearchOptions()))) == ["1", "3"]

    def test_projection_defaults_to_association_key(self, backend):
        hits = backend.search({"query": {"match_all": {}}}, SearchOptions(size=1))

        assert set(hits[0]) == {"_id", "_score", "association_key"}

    def test_paging_and_min_score(self, backend):
        query = {"query": {"match_all": {}}}

        assert _keys(backend.search(query, SearchOptions(size=2, page=2))) == ["3", "9"]
        assert backend.search(query, SearchOptions(min_score=1.5)) == []

    def test_unsupported_query_type(self, backend):
        with pytest.raises(BackendError) as excinfo:
            backend.search({"query": {"fuzzy": {"text": "quik"}}}, SearchOptions())

        assert excinfo.value.status_code == 400

    def test_body_without_query_is_rejected(self, backend):
        with pytest.raises(BackendError):
            backend.search({"match_all": {}}, SearchOptions())


class TestRescore:
    @pytest.fixture(autouse=True)
    def _corpus(self, backend):
        for key in ("1", "2", "3"):
            backend.create_record(_doc(key, f"document {key}"))

    def _rescored(self, backend, window_size):
        query = {
            "query": {"match_all": {}},
            "rescore": {
                "window_size": window_size,
                "query": {
                    "rescore_query": {"term": {"association_key": "3"}},
                    "query_weight": 1.0,
                    "rescore_query_weight": 1.0,
                },
            },
        }
        return backend.search(query, SearchOptions())

    def test_documents_outside_the_window_keep_their_score(self, backend):
        hits = self._rescored(backend, window_size=2)

        assert _keys(hits) == ["1", "2", "3"]
        assert [hit["_score"] for hit in hits] == [1.0, 1.0, 1.0]

    def test_rescore_adds_to_documents_inside_the_window(self, backend):
        hits = self._rescored(backend, window_size=3)

        assert _keys(hits) == ["3", "1", "2"]
        assert hits[0]["_score"] == 2.0
