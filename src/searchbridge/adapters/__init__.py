"""Search adapter layer — Connectors for search backends.

Built-in adapters:
  - algolia: Algolia hosted search (REST, async tasks)
  - elasticsearch: Elasticsearch v8+ (official async client)
  - opensearch: OpenSearch v2+ (same adapter, OpenSearch flavor)
  - meilisearch: Meilisearch v1+ (REST, async tasks)
  - typesense: Typesense v0.25+ (REST, collection aliases)

Adapters are built through ``AdapterRegistry``; implement ``SearchAdapter``
and register it to connect another backend.
"""
