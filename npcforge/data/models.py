"""Typed records for compendium documents, index entries and cache snapshots."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from .pricing import price_to_copper


def _system_of(raw: dict[str, Any]) -> dict[str, Any]:
    system = raw.get("system")
    return system if isinstance(system, dict) else {}


def _original_name(raw: dict[str, Any]) -> str | None:
    flags = raw.get("flags")
    if isinstance(flags, dict):
        babele = flags.get("babele")
        if isinstance(babele, dict) and babele.get("originalName"):
            return str(babele["originalName"])
    if raw.get("originalName"):
        return str(raw["originalName"])
    return None


def _properties(system: dict[str, Any]) -> frozenset[str]:
    props = system.get("properties")
    if isinstance(props, (list, tuple, set, frozenset)):
        return frozenset(str(p).lower() for p in props)
    if isinstance(props, dict):
        # Older system versions store properties as {"mgc": true, ...}
        return frozenset(str(k).lower() for k, v in props.items() if v)
    return frozenset()


@dataclass(frozen=True, eq=False)
class IndexEntry:
    """Cheap projection of a document (type, name, price, rarity)."""

    id: str
    type: str
    name: str
    collection: str
    price_cp: int | None = None
    rarity: str = ""
    properties: frozenset[str] = frozenset()
    original_name: str | None = None
    identifier: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f"{self.collection}:{self.id}"

    @property
    def token_key(self) -> str:
        return f"index:{self.key}"

    @property
    def magical(self) -> bool:
        return "mgc" in self.properties or (bool(self.rarity) and self.rarity != "none")

    @classmethod
    def from_raw(cls, raw: dict[str, Any], collection: str) -> "IndexEntry":
        system = _system_of(raw)
        return cls(
            id=str(raw.get("_id") or raw.get("id") or ""),
            type=str(raw.get("type") or "").strip().lower(),
            name=str(raw.get("name") or "").strip(),
            collection=collection,
            price_cp=price_to_copper(system.get("price")),
            rarity=str(system.get("rarity") or "").strip().lower(),
            properties=_properties(system),
            original_name=_original_name(raw),
            identifier=str(system["identifier"]) if system.get("identifier") else None,
            raw=raw,
        )


@dataclass(frozen=True, eq=False)
class Document(IndexEntry):
    """A full compendium document.

    Documents are shared between every cache consumer and are never mutated;
    ``clone()`` returns the deep-copied payload that callers may edit.
    """

    @property
    def token_key(self) -> str:
        return f"doc:{self.key}"

    def clone(self) -> dict[str, Any]:
        data = copy.deepcopy(self.raw)
        data.setdefault("_id", self.id)
        data.setdefault("name", self.name)
        data.setdefault("type", self.type)
        return data


@dataclass(frozen=True)
class CollectionInfo:
    """Collection metadata as listed by the host store."""

    name: str
    document_type: str = "Item"
    system_id: str | None = None
    title: str = ""

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "CollectionInfo":
        return cls(
            name=str(raw.get("name") or raw.get("collection") or ""),
            document_type=str(raw.get("documentType") or raw.get("documentName") or "Item"),
            system_id=raw.get("systemId") or raw.get("system") or None,
            title=str(raw.get("title") or raw.get("label") or ""),
        )


@dataclass
class PackSnapshot:
    name: str
    label: str = ""
    document_type: str = "Item"
    entries: list[IndexEntry] = field(default_factory=list)
    documents: dict[str, Document] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "documentType": self.document_type,
            "entries": [entry.raw for entry in self.entries],
            "documents": {doc_id: doc.raw for doc_id, doc in self.documents.items()},
        }


@dataclass
class CompendiumSnapshot:
    """Materialized copy of every cached collection.

    ``packs_by_type`` is derived from ``packs`` and is recomputed whenever a
    snapshot is built or loaded.
    """

    generated_at: str
    cache_version: str
    packs: dict[str, PackSnapshot] = field(default_factory=dict)
    packs_by_type: dict[str, list[str]] = field(default_factory=dict)

    @property
    def document_count(self) -> int:
        return sum(len(pack.documents) for pack in self.packs.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "cacheVersion": self.cache_version,
            "packs": {name: pack.to_dict() for name, pack in self.packs.items()},
            "packsByType": {kind: list(names) for kind, names in self.packs_by_type.items()},
        }
