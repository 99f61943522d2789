"""Schema mapping — Canonical field types to and from each backend's native schema."""
