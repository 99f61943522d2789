"""Index model — Logical search collections and their canonical field mappings.

An ``Index`` is the unit every adapter operation is addressed to. It is
defined by configuration outside the adapter layer and is treated as
read-only here: adapters derive physical store names, schemas and query
field lists from it, but never modify it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class FieldType(str, Enum):
    """Canonical field-type vocabulary shared by all backends."""

    TEXT = "text"
    KEYWORD = "keyword"
    FACET = "facet"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    GEO_POINT = "geo_point"
    OBJECT = "object"
    EMBEDDING = "embedding"


class FieldRole(str, Enum):
    """Optional semantic tag attached to a field mapping."""

    TITLE = "title"
    URL = "url"
    DATE = "date"
    SUMMARY = "summary"
    THUMBNAIL = "thumbnail"
    IMAGE = "image"


NUMERIC_TYPES = frozenset({FieldType.INTEGER, FieldType.FLOAT, FieldType.DATE})


class FieldMapping(BaseModel):
    """One canonical field of an index."""

    index_field_name: str = Field(description="Physical key of the field in indexed documents")
    index_field_type: FieldType = Field(default=FieldType.TEXT, description="Canonical field type")
    enabled: bool = Field(default=True, description="Whether the field is sent to the backend")
    weight: int = Field(default=5, ge=1, le=10, description="Searchable priority, higher wins")
    role: FieldRole | None = Field(default=None, description="Optional semantic role")
    resolver_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque per-mapping options (e.g. vector dimension)",
    )

    @property
    def is_numeric(self) -> bool:
        return self.index_field_type in NUMERIC_TYPES


class Index(BaseModel):
    """A named, logical search collection.

    The physical name sent to a backend is ``engine_config["index_name"]``
    when set, otherwise the handle prefixed with the configured index
    prefix.
    """

    handle: str = Field(min_length=1, description="Stable identifier, unique per deployment")
    name: str = Field(default="", description="Human-readable index name")
    engine_type: str = Field(default="elasticsearch", description="Engine family selector")
    engine_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Per-index overrides: index_prefix, index_name, hosts, credentials",
    )
    field_mappings: list[FieldMapping] = Field(default_factory=list, description="Canonical fields")

    @model_validator(mode="after")
    def _check_unique_roles(self) -> Index:
        seen: dict[FieldRole, str] = {}
        for mapping in self.field_mappings:
            if not mapping.enabled or mapping.role is None:
                continue
            if mapping.role in seen:
                raise ValueError(
                    f"Role '{mapping.role.value}' is held by both '{seen[mapping.role]}' "
                    f"and '{mapping.index_field_name}' in index '{self.handle}'"
                )
            seen[mapping.role] = mapping.index_field_name
        return self

    # ── Naming ───────────────────────────────────────────────────────────

    def physical_name(self, prefix: str = "") -> str:
        """Resolve the physical store name for this index.

        Args:
            prefix: Global prefix, used when the index does not carry its own.

        Returns:
            The explicit override name, or ``prefix + handle``.
        """
        override = self.engine_config.get("index_name")
        if override:
            return str(override)
        own_prefix = self.engine_config.get("index_prefix")
        return f"{own_prefix if own_prefix is not None else prefix}{self.handle}"

    def with_physical_name(self, name: str) -> Index:
        """Return a copy of this index pinned to another physical store."""
        config = {**self.engine_config, "index_name": name}
        return self.model_copy(update={"engine_config": config})

    # ── Mapping lookups ──────────────────────────────────────────────────

    def enabled_mappings(self) -> list[FieldMapping]:
        return [m for m in self.field_mappings if m.enabled]

    def field_types(self) -> dict[str, FieldType]:
        return {m.index_field_name: m.index_field_type for m in self.enabled_mappings()}

    def fields_of_type(self, *types: FieldType) -> list[FieldMapping]:
        return [m for m in self.enabled_mappings() if m.index_field_type in types]

    def mapping_for_role(self, role: FieldRole) -> FieldMapping | None:
        for mapping in self.enabled_mappings():
            if mapping.role == role:
                return mapping
        return None
