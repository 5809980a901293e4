"""
Indexing and query core.

- extractor: record -> normalized index text
- synchronizer: one index document per (entity type, key), deferred writes
- query_builder: query DSL helpers, including the proximity rescore query
- query_engine: searches returning keys, scores or documents
- reconciler: reorders primary-store results into relevance order
- reindexer: bounded-memory batch re-indexing
- analyzers, stats, phrase: text analysis and scoring used by the in-memory backend
"""
