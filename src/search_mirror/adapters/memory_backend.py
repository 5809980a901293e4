"""In-memory search backend for tests and local development.

Interprets the query DSL subset produced by ``search.query_builder``:
``match``, ``match_phrase`` (with slop), ``multi_match`` (``best_fields`` and
``phrase``), ``query_string``, ``term``/``terms``, ``bool`` and
``match_all``, plus ``rescore`` windows. Scoring is BM25 over the standard
analyzer; sloppy phrases count ``1 / (distance + 1)`` as their frequency so
closer terms always score at least as high.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
import itertools
import logging
from typing import Any
import uuid

from search_mirror.adapters.search_backend import DEFAULT_SEARCH_FIELDS, SearchBackend, build_source_filter
from search_mirror.deployment_config import BackendLocation
from search_mirror.domain.model import ALL_FIELDS, SearchOptions
from search_mirror.errors import BackendError
from search_mirror.search.analyzers import Token, get_analyzer
from search_mirror.search.phrase import sloppy_distance
from search_mirror.search.stats import average_length, bm25, calculate_idf


logger = logging.getLogger(__name__)

_DEFAULT_SIZE = 10
_KEYWORD_SUFFIXES = (".raw", ".keyword")

Scores = dict[str, float]


@dataclass
class _MemoryIndex:
    mapping: dict[str, Any] = field(default_factory=dict)
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    analyzed: dict[str, dict[str, list[Token]]] = field(default_factory=dict)
    sequence: dict[str, int] = field(default_factory=dict)


class InMemorySearchCluster:
    """A set of in-memory indices shared by every backend it hands out."""

    def __init__(self) -> None:
        self.indices: dict[str, _MemoryIndex] = {}
        self.provision_calls: list[tuple[str, str]] = []
        self.unavailable = False
        self.reject_writes = False
        self._counter = itertools.count()

    def backend(self, location: BackendLocation) -> InMemorySearchBackend:
        return InMemorySearchBackend(location, self)

    def documents(self, location: BackendLocation) -> dict[str, dict[str, Any]]:
        """Return a copy of the stored documents for a location (test helper)."""
        index = self.indices.get(location.physical_index)
        if index is None:
            return {}
        return {doc_id: dict(doc) for doc_id, doc in index.documents.items()}

    def next_sequence(self) -> int:
        return next(self._counter)


class InMemorySearchBackend(SearchBackend):
    """Backend view of one physical index inside an ``InMemorySearchCluster``."""

    def __init__(self, location: BackendLocation, cluster: InMemorySearchCluster) -> None:
        self.location = location
        self.cluster = cluster
        self.last_query: dict[str, Any] | None = None

    # --- provisioning -----------------------------------------------------

    def create_index(self, name: str, config: Mapping[str, Any] | None = None) -> bool:
        self._check_available()
        self.cluster.provision_calls.append(("index", name))
        self.cluster.indices.setdefault(name, _MemoryIndex())
        return True

    def create_mapping(self, schema: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> bool:
        self.cluster.provision_calls.append(("mapping", self.location.physical_index))
        self._index().mapping.update(schema)
        return True

    # --- documents --------------------------------------------------------

    def exists(self, doc_id: str) -> bool:
        return doc_id in self._index().documents

    def create_record(self, doc: Mapping[str, Any]) -> str | None:
        return self._store(uuid.uuid4().hex, doc)

    def update_record(self, doc_id: str, doc: Mapping[str, Any]) -> str | None:
        return self._store(doc_id, doc)

    def delete_record(self, doc_id: str) -> bool:
        index = self._index()
        if doc_id not in index.documents:
            return False
        del index.documents[doc_id]
        del index.analyzed[doc_id]
        del index.sequence[doc_id]
        return True

    # --- search -----------------------------------------------------------

    def search(self, query: Mapping[str, Any], options: SearchOptions) -> list[dict[str, Any]]:
        index = self._index()
        self.last_query = dict(query)
        if "query" not in query:
            raise BackendError("Search body must carry a top-level 'query'", status_code=400)

        evaluator = _Evaluator(index)
        scores = evaluator.evaluate(query["query"])
        ranked = sorted(scores.items(), key=lambda item: (-item[1], index.sequence[item[0]]))

        rescores = query.get("rescore") or []
        if isinstance(rescores, Mapping):
            rescores = [rescores]
        for rescore in rescores:
            ranked = evaluator.rescore(ranked, rescore)

        if options.min_score is not None:
            ranked = [(doc_id, score) for doc_id, score in ranked if score >= options.min_score]

        size = options.size if options.size is not None else _DEFAULT_SIZE
        start = options.offset(size)
        source_filter = build_source_filter(options)
        hits = []
        for doc_id, score in ranked[start : start + size]:
            source = index.documents[doc_id]
            if source_filter is not True:
                source = {key: value for key, value in source.items() if key in source_filter}
            hits.append({"_id": doc_id, "_score": score, **source})
        return hits

    def describe_last_request(self) -> str | None:
        if self.last_query is None:
            return None
        return f"memory://{self.location.physical_index}/_search {self.last_query!r}"

    # --- internal helpers -------------------------------------------------

    def _check_available(self) -> None:
        if self.cluster.unavailable:
            raise BackendError("In-memory backend marked unavailable", status_code=503)

    def _index(self) -> _MemoryIndex:
        self._check_available()
        index = self.cluster.indices.get(self.location.physical_index)
        if index is None:
            raise BackendError(f"no such index [{self.location.physical_index}]", status_code=404)
        return index

    def _store(self, doc_id: str, doc: Mapping[str, Any]) -> str | None:
        index = self._index()
        if self.cluster.reject_writes:
            return None
        index.documents[doc_id] = dict(doc)
        index.analyzed[doc_id] = {
            name: _analyzer_for(index, name)(str(value)) for name, value in doc.items() if isinstance(value, str)
        }
        index.sequence.setdefault(doc_id, self.cluster.next_sequence())
        return doc_id


def _analyzer_for(index: _MemoryIndex, field_name: str):
    field_type = index.mapping.get(field_name, {}).get("type", "text")
    return get_analyzer("keyword" if field_type == "keyword" else "standard")


def _split_boost(field_spec: str) -> tuple[str, float]:
    name, _, boost = field_spec.partition("^")
    return name, float(boost) if boost else 1.0


def _query_body(spec: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(spec, Mapping):
        return str(spec.get("query", "")), dict(spec)
    return str(spec), {}


class _Evaluator:
    """Scores query clauses against one in-memory index."""

    def __init__(self, index: _MemoryIndex) -> None:
        self.index = index
        self.total_docs = max(len(index.documents), 1)
        self._avg_lengths: dict[str, float] = {}

    def evaluate(self, clause: Mapping[str, Any]) -> Scores:
        if not isinstance(clause, Mapping) or len(clause) != 1:
            raise BackendError(f"Malformed query clause: {clause!r}", status_code=400)
        kind, body = next(iter(clause.items()))
        handler = getattr(self, f"_q_{kind}", None)
        if handler is None:
            raise BackendError(f"Unsupported query type [{kind}]", status_code=400)
        return handler(body)

    def rescore(self, ranked: list[tuple[str, float]], rescore: Mapping[str, Any]) -> list[tuple[str, float]]:
        window_size = int(rescore.get("window_size", _DEFAULT_SIZE))
        spec = rescore.get("query") or {}
        query_weight = float(spec.get("query_weight", 1.0))
        rescore_weight = float(spec.get("rescore_query_weight", 1.0))
        boosts = self.evaluate(spec["rescore_query"])

        window = [
            (doc_id, query_weight * score + rescore_weight * boosts.get(doc_id, 0.0))
            for doc_id, score in ranked[:window_size]
        ]
        window.sort(key=lambda item: (-item[1], self.index.sequence[item[0]]))
        return window + ranked[window_size:]

    # --- clause handlers ----------------------------------------------------

    def _q_match_all(self, body: Any) -> Scores:
        return {doc_id: 1.0 for doc_id in self.index.documents}

    def _q_match(self, body: Mapping[str, Any]) -> Scores:
        field_name, spec = next(iter(body.items()))
        text, options = _query_body(spec)
        require_all = str(options.get("operator", "or")).lower() == "and"
        return self._best_of(self._expand_fields(field_name), lambda name: self._terms_score(name, text, require_all))

    def _q_match_phrase(self, body: Mapping[str, Any]) -> Scores:
        field_name, spec = next(iter(body.items()))
        text, options = _query_body(spec)
        slop = int(options.get("slop", 0))
        return self._best_of(self._expand_fields(field_name), lambda name: self._phrase_score(name, text, slop))

    def _q_multi_match(self, body: Mapping[str, Any]) -> Scores:
        text = str(body.get("query", ""))
        fields = list(body.get("fields") or DEFAULT_SEARCH_FIELDS)
        if str(body.get("type", "best_fields")) == "phrase":
            slop = int(body.get("slop", 0))
            return self._best_of(fields, lambda name: self._phrase_score(name, text, slop))
        require_all = str(body.get("operator", "or")).lower() == "and"
        return self._best_of(fields, lambda name: self._terms_score(name, text, require_all))

    def _q_query_string(self, body: Mapping[str, Any]) -> Scores:
        text = str(body.get("query", ""))
        fields = list(body.get("fields") or [body.get("default_field") or ALL_FIELDS])
        free_words: list[str] = []
        scores: Scores = {}
        for word in text.split():
            if word in ("AND", "OR"):
                continue
            name, sep, value = word.partition(":")
            if sep and value:
                self._accumulate(scores, self._field_value_score(name, value.strip("\"'")))
            else:
                free_words.append(word)
        if free_words:
            free_text = " ".join(free_words)
            expanded = [spec for field_spec in fields for spec in self._expand_fields(field_spec)]
            self._accumulate(scores, self._best_of(expanded, lambda name: self._terms_score(name, free_text, False)))
        return scores

    def _q_term(self, body: Mapping[str, Any]) -> Scores:
        field_name, spec = next(iter(body.items()))
        value = spec.get("value") if isinstance(spec, Mapping) else spec
        return self._exact(field_name, [value])

    def _q_terms(self, body: Mapping[str, Any]) -> Scores:
        field_name, values = next(iter(body.items()))
        return self._exact(field_name, list(values))

    def _q_bool(self, body: Mapping[str, Any]) -> Scores:
        candidates = set(self.index.documents)
        scores: Scores = dict.fromkeys(candidates, 0.0)

        for clause in _as_list(body.get("must")):
            matched = self.evaluate(clause)
            candidates &= matched.keys()
            for doc_id in candidates:
                scores[doc_id] += matched[doc_id]
        for clause in _as_list(body.get("filter")):
            candidates &= self.evaluate(clause).keys()
        for clause in _as_list(body.get("must_not")):
            candidates -= self.evaluate(clause).keys()

        should = _as_list(body.get("should"))
        if should:
            matched_any: set[str] = set()
            for clause in should:
                matched = self.evaluate(clause)
                matched_any |= matched.keys()
                for doc_id in candidates & matched.keys():
                    scores[doc_id] += matched[doc_id]
            if not body.get("must") and not body.get("filter"):
                candidates &= matched_any
        return {doc_id: scores[doc_id] for doc_id in candidates}

    # --- scoring primitives -------------------------------------------------

    def _expand_fields(self, field_spec: str) -> list[str]:
        if field_spec in (ALL_FIELDS, "*"):
            return list(DEFAULT_SEARCH_FIELDS)
        return [field_spec]

    def _best_of(self, field_specs: Iterable[str], score_field) -> Scores:
        best: Scores = {}
        for field_spec in field_specs:
            name, boost = _split_boost(field_spec)
            for doc_id, score in score_field(name).items():
                best[doc_id] = max(best.get(doc_id, 0.0), score * boost)
        return best

    def _accumulate(self, into: Scores, scores: Scores) -> None:
        for doc_id, score in scores.items():
            into[doc_id] = into.get(doc_id, 0.0) + score

    def _query_terms(self, field_name: str, text: str) -> list[str]:
        terms: list[str] = []
        for token in _analyzer_for(self.index, field_name)(text):
            if token.text not in terms:
                terms.append(token.text)
        return terms

    def _positions(self, doc_id: str, field_name: str) -> dict[str, list[int]]:
        positions: dict[str, list[int]] = {}
        for token in self.index.analyzed[doc_id].get(field_name, []):
            positions.setdefault(token.text, []).append(token.position)
        return positions

    def _avg_length(self, field_name: str) -> float:
        if field_name not in self._avg_lengths:
            lengths = {
                doc_id: len(fields[field_name])
                for doc_id, fields in self.index.analyzed.items()
                if field_name in fields
            }
            self._avg_lengths[field_name] = average_length(lengths)
        return self._avg_lengths[field_name]

    def _doc_freq(self, field_name: str, term: str) -> int:
        return sum(
            1
            for fields in self.index.analyzed.values()
            if any(token.text == term for token in fields.get(field_name, []))
        )

    def _terms_score(self, field_name: str, text: str, require_all: bool) -> Scores:
        terms = self._query_terms(field_name, text)
        if not terms:
            return {}
        idfs = {term: calculate_idf(self._doc_freq(field_name, term), self.total_docs) for term in terms}
        avg_length = self._avg_length(field_name)
        scores: Scores = {}
        for doc_id, fields in self.index.analyzed.items():
            tokens = fields.get(field_name)
            if not tokens:
                continue
            positions = self._positions(doc_id, field_name)
            matched = [term for term in terms if term in positions]
            if not matched or (require_all and len(matched) < len(terms)):
                continue
            scores[doc_id] = sum(
                idfs[term] * bm25(len(positions[term]), len(tokens), avg_length) for term in matched
            )
        return scores

    def _phrase_score(self, field_name: str, text: str, slop: int) -> Scores:
        terms = self._query_terms(field_name, text)
        if not terms:
            return {}
        idf_sum = sum(calculate_idf(self._doc_freq(field_name, term), self.total_docs) for term in terms)
        avg_length = self._avg_length(field_name)
        scores: Scores = {}
        for doc_id, fields in self.index.analyzed.items():
            tokens = fields.get(field_name)
            if not tokens:
                continue
            positions = self._positions(doc_id, field_name)
            distance = sloppy_distance({term: positions.get(term, []) for term in terms})
            if distance > slop:
                continue
            frequency = 1.0 / (distance + 1.0)
            scores[doc_id] = idf_sum * bm25(frequency, len(tokens), avg_length)
        return scores

    def _field_value_score(self, field_name: str, value: str) -> Scores:
        field_type = self.index.mapping.get(field_name, {}).get("type", "text")
        if field_type == "keyword":
            return self._exact(field_name, [value])
        return self._terms_score(field_name, value, False)

    def _exact(self, field_name: str, values: Sequence[Any]) -> Scores:
        for suffix in _KEYWORD_SUFFIXES:
            field_name = field_name.removesuffix(suffix)
        wanted = {str(value) for value in values}
        return {
            doc_id: 1.0
            for doc_id, doc in self.index.documents.items()
            if field_name in doc and str(doc[field_name]) in wanted
        }


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
