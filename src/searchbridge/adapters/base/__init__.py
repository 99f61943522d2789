"""Base adapter interface — Abstract classes for search engine connectors."""
