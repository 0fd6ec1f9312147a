"""Schema of the persisted compendium cache snapshot.

The snapshot is a single JSON blob::

    {
      "generatedAt": "...",
      "cacheVersion": "...",
      "packs": {"<collection>": {"label", "documentType", "entries", "documents"}},
      "packsByType": {"<kind>": ["<collection>", ...]}
    }

Validation is lenient about extra keys (older blobs carry ``documentName``)
but strict about the container shapes the cache relies on.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

REQUIRED_TOP_LEVEL_FIELDS = ("generatedAt", "packs")


class PackModel(BaseModel):
    """One cached collection."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    label: str = ""
    document_type: str = Field(
        default="Item",
        validation_alias=AliasChoices("documentType", "documentName", "document_type"),
    )
    entries: list[dict[str, Any]] = Field(default_factory=list)
    documents: dict[str, dict[str, Any]] = Field(default_factory=dict)


class SnapshotModel(BaseModel):
    """Top-level snapshot envelope."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    generated_at: str | None = Field(default=None, validation_alias=AliasChoices("generatedAt", "generated_at"))
    cache_version: str | None = Field(default=None, validation_alias=AliasChoices("cacheVersion", "cache_version"))
    packs: dict[str, PackModel] = Field(default_factory=dict)
    packs_by_type: dict[str, list[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("packsByType", "packs_by_type"),
    )


def missing_top_level_fields(raw: Any) -> list[str]:
    """Return the required top-level fields that are absent or empty."""
    if not isinstance(raw, dict):
        return list(REQUIRED_TOP_LEVEL_FIELDS)
    return [name for name in REQUIRED_TOP_LEVEL_FIELDS if not raw.get(name)]
