"""Build the query bodies sent to the search backend."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import re
from typing import Any

from search_mirror.adapters.search_backend import DEFAULT_SEARCH_FIELDS
from search_mirror.domain.model import ALL_FIELDS


DEFAULT_WINDOW_SIZE = 50
DEFAULT_SLOP = 50

_WHITESPACE_PATTERN = re.compile(r"\s+")


def build_query_string(text: str, field: str = ALL_FIELDS) -> dict[str, Any]:
    """Wrap user text as a ``query_string`` query over one field or the default fields."""
    if field == ALL_FIELDS:
        return {"query_string": {"query": text, "fields": list(DEFAULT_SEARCH_FIELDS)}}
    return {"query_string": {"query": text, "default_field": field}}


def wrap_query(query: str | Mapping[str, Any], field: str = ALL_FIELDS) -> dict[str, Any]:
    """Normalize a caller query into a request body with a top-level ``query``.

    Plain strings become ``query_string`` queries (empty ones ``match_all``);
    mappings without a ``query`` key are wrapped, and any other top-level keys
    of an already wrapped body (``rescore``, ...) pass through untouched.
    """
    if isinstance(query, str):
        if not query.strip():
            return {"query": {"match_all": {}}}
        return {"query": build_query_string(query, field)}
    if isinstance(query, Mapping):
        if not query:
            raise ValueError("Query mapping must not be empty")
        if "query" in query:
            return dict(query)
        return {"query": dict(query)}
    raise TypeError(f"Query must be a string or a mapping, got {type(query).__name__}")


def scope_to_entity(body: Mapping[str, Any], entity_type: str) -> dict[str, Any]:
    """Restrict a wrapped query to documents of one entity type."""
    scoped = dict(body)
    scoped["query"] = {
        "bool": {
            "must": [body["query"]],
            "filter": [{"term": {"entity_type.raw": entity_type}}],
        }
    }
    return scoped


def exact_lookup_query(entity_type: str, association_key: Any) -> dict[str, Any]:
    """Exact (non-analyzed) lookup of the document mirroring one record."""
    return {
        "query": {
            "bool": {
                "filter": [
                    {"term": {"entity_type.raw": entity_type}},
                    {"term": {"association_key": str(association_key)}},
                ]
            }
        }
    }


def build_proximity_query(
    terms: str | Sequence[str],
    field: str = ALL_FIELDS,
    window_size: int = DEFAULT_WINDOW_SIZE,
    slop: int = DEFAULT_SLOP,
) -> dict[str, Any]:
    """Two-stage query: any-term match, then a sloppy-phrase rescore of the top hits.

    Documents where the terms sit close together are lifted above documents
    that merely contain them; documents outside the rescore window keep their
    first-stage score.
    """
    text = terms if isinstance(terms, str) else " ".join(terms)
    if window_size < 1:
        raise ValueError("window_size must be positive")
    if slop < 0:
        raise ValueError("slop must not be negative")

    if field == ALL_FIELDS:
        fields = list(DEFAULT_SEARCH_FIELDS)
        first_stage = {"multi_match": {"query": text, "fields": fields, "type": "best_fields", "operator": "or"}}
        second_stage = {"multi_match": {"query": text, "fields": fields, "type": "phrase", "slop": slop}}
    else:
        first_stage = {"match": {field: {"query": text, "operator": "or"}}}
        second_stage = {"match_phrase": {field: {"query": text, "slop": slop}}}

    return {
        "query": first_stage,
        "rescore": {
            "window_size": window_size,
            "query": {
                "rescore_query": second_stage,
                "query_weight": 1.0,
                "rescore_query_weight": 1.0,
            },
        },
    }


def fuzzyize(query: str) -> str:
    r"""Turn whitespace runs into ``\s*`` so a phrase matches with or without spaces."""
    return _WHITESPACE_PATTERN.sub(r"\\s*", query)
