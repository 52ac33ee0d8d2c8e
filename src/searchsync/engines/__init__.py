"""Search engine layer — Pluggable connectors for search backends.

Built-in engines:
  - opensearch: OpenSearch v2+ and Elasticsearch-compatible clusters (alias swaps)
  - meilisearch: MeiliSearch (swap-indexes)
  - typesense: Typesense (collection alias swaps)
  - algolia: Algolia REST API (move-index swaps)
  - memory: in-process engine for tests and local development

Subclass ``SearchEngine`` and register it on an ``EngineRegistry`` to add
your own backend.
"""
