"""Process-wide cache of materialized compendium collections.

The cache wraps one ``CompendiumSnapshot``. Every derived structure
(documents per collection, searchable entries, name maps) belongs to the
current *generation*; installing a different snapshot object drops all of
them at once. Misses return ``None``/``[]`` so callers can fall back to the
live host store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable

from dateutil import parser as dateparser
from pydantic import ValidationError

from npcforge.core.schema import SnapshotModel, missing_top_level_fields

from .models import CompendiumSnapshot, Document, IndexEntry, PackSnapshot
from .text import SearchTokenizer, default_tokenizer, expand_term

logger = logging.getLogger(__name__)

PACK_KINDS = ("weapons", "loot", "spells", "features", "classFeatures")

_WEAPON_TYPES = frozenset({"weapon", "equipment"})
_LOOT_TYPES = frozenset({"loot", "consumable", "equipment"})


def build_packs_by_type(packs: dict[str, PackSnapshot]) -> dict[str, list[str]]:
    """Derive kind -> collection names purely from index entry types."""
    packs_by_type: dict[str, list[str]] = {kind: [] for kind in PACK_KINDS}

    for name, pack in packs.items():
        types = {entry.type for entry in pack.entries}
        has_feat = "feat" in types
        if types & _WEAPON_TYPES:
            packs_by_type["weapons"].append(name)
        if types & _LOOT_TYPES:
            packs_by_type["loot"].append(name)
        if "spell" in types:
            packs_by_type["spells"].append(name)
        if has_feat:
            packs_by_type["features"].append(name)
            label = pack.label.lower()
            if "class" in name.lower() or "class" in label or "класс" in label:
                packs_by_type["classFeatures"].append(name)

    if not packs_by_type["classFeatures"]:
        packs_by_type["classFeatures"] = list(packs_by_type["features"])
    return packs_by_type


@dataclass
class SnapshotLoadResult:
    snapshot: CompendiumSnapshot | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.snapshot is not None and not self.problems


def snapshot_from_dict(raw: dict[str, Any]) -> CompendiumSnapshot:
    model = SnapshotModel.model_validate(raw)
    packs: dict[str, PackSnapshot] = {}
    for name, pack in model.packs.items():
        packs[name] = PackSnapshot(
            name=name,
            label=pack.label,
            document_type=pack.document_type,
            entries=[IndexEntry.from_raw(entry, name) for entry in pack.entries],
            documents={
                doc_id: Document.from_raw({"_id": doc_id, **doc}, name)
                for doc_id, doc in pack.documents.items()
            },
        )
    return CompendiumSnapshot(
        generated_at=model.generated_at or "",
        cache_version=model.cache_version or "",
        packs=packs,
        packs_by_type=build_packs_by_type(packs),
    )


def load_snapshot(path: Path) -> SnapshotLoadResult:
    """Read and validate a persisted snapshot.

    A missing file is not a problem (no cache built yet). Parse and shape
    errors are returned as problems; the caller keeps running without cache.
    """
    if not path.exists():
        return SnapshotLoadResult()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("[CollectionCache] Failed to read snapshot %s: %s", path, exc)
        return SnapshotLoadResult(problems=[f"unreadable snapshot: {exc}"])

    problems = [f"missing or empty field: {name}" for name in missing_top_level_fields(raw)]
    if not isinstance(raw, dict):
        logger.warning("[CollectionCache] Snapshot %s is not an object", path)
        return SnapshotLoadResult(problems=problems)

    try:
        snapshot = snapshot_from_dict(raw)
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            problems.append(f"invalid field {location}: {error.get('msg')}")
        logger.warning("[CollectionCache] Snapshot %s failed validation: %s", path, "; ".join(problems))
        return SnapshotLoadResult(problems=problems)

    if problems:
        logger.warning("[CollectionCache] Snapshot %s is incomplete: %s", path, "; ".join(problems))
    if not snapshot.packs:
        return SnapshotLoadResult(problems=problems)
    return SnapshotLoadResult(snapshot=snapshot, problems=problems)


def save_snapshot(path: Path, snapshot: CompendiumSnapshot) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info(
        "[CollectionCache] Saved snapshot: path=%s collections=%d documents=%d",
        path,
        len(snapshot.packs),
        snapshot.document_count,
    )


class CollectionCache:
    """Lookup facade over the current snapshot."""

    def __init__(
        self,
        snapshot: CompendiumSnapshot | None = None,
        tokenizer: SearchTokenizer | None = None,
    ) -> None:
        self._tokenizer = tokenizer or default_tokenizer
        self._snapshot: CompendiumSnapshot | None = None
        self._generation = 0
        self._docs_by_collection: dict[str, list[Document]] = {}
        self._searchable_by_collection: dict[str, list[tuple[Document, frozenset[str]]]] = {}
        self._name_map_by_collection: dict[str, dict[str, Document]] = {}
        self._missing_warned: set[str] = set()
        if snapshot is not None:
            self.set_snapshot(snapshot)

    @property
    def snapshot(self) -> CompendiumSnapshot | None:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tokenizer(self) -> SearchTokenizer:
        return self._tokenizer

    def is_loaded(self) -> bool:
        return self._snapshot is not None and bool(self._snapshot.packs)

    def set_snapshot(self, snapshot: CompendiumSnapshot | None) -> None:
        if snapshot is self._snapshot:
            return
        self._snapshot = snapshot
        self._generation += 1
        self._docs_by_collection = {}
        self._searchable_by_collection = {}
        self._name_map_by_collection = {}
        self._tokenizer.clear()
        if snapshot is not None:
            logger.info(
                "[CollectionCache] Installed snapshot: generation=%d collections=%d documents=%d",
                self._generation,
                len(snapshot.packs),
                snapshot.document_count,
            )

    def has_collection(self, collection: str) -> bool:
        return self._snapshot is not None and collection in self._snapshot.packs

    def get_pack(self, collection: str) -> PackSnapshot | None:
        if self._snapshot is None:
            return None
        return self._snapshot.packs.get(collection)

    def pack_label(self, collection: str) -> str:
        pack = self.get_pack(collection)
        return pack.label if pack else ""

    def get_document(self, collection: str, doc_id: str) -> Document | None:
        pack = self.get_pack(collection)
        if pack is None:
            return None
        return pack.documents.get(doc_id)

    def get_index_entries(self, collection: str) -> list[IndexEntry] | None:
        pack = self.get_pack(collection)
        if pack is None or not pack.entries:
            return None
        return pack.entries

    def documents_for(self, collection: str) -> list[Document]:
        docs = self._docs_by_collection.get(collection)
        if docs is None:
            pack = self.get_pack(collection)
            docs = list(pack.documents.values()) if pack else []
            self._docs_by_collection[collection] = docs
        return docs

    def get_documents_for_collections(self, collections: Iterable[str]) -> list[Document]:
        out: list[Document] = []
        for collection in collections:
            out.extend(self.documents_for(collection))
        return out

    def searchable_entries(self, collection: str) -> list[tuple[Document, frozenset[str]]]:
        entries = self._searchable_by_collection.get(collection)
        if entries is None:
            entries = [(doc, self._tokenizer.tokens(doc)) for doc in self.documents_for(collection)]
            self._searchable_by_collection[collection] = entries
        return entries

    def name_map(self, collection: str) -> dict[str, Document]:
        name_map = self._name_map_by_collection.get(collection)
        if name_map is None:
            name_map = {}
            for doc, tokens in self.searchable_entries(collection):
                for token in tokens:
                    name_map.setdefault(token, doc)
            self._name_map_by_collection[collection] = name_map
        return name_map

    def get_document_by_name(
        self,
        collections: Iterable[str],
        name: str,
        accept: Callable[[Document], bool] | None = None,
    ) -> Document | None:
        """Exact token lookup; collections are scanned in the given order.

        With ``accept`` every document carrying a matching token is tried, so
        a rejected hit does not hide an acceptable one further along.
        """
        targets = expand_term(name)
        if not targets:
            return None
        for collection in collections:
            if accept is None:
                name_map = self.name_map(collection)
                for target in targets:
                    doc = name_map.get(target)
                    if doc is not None:
                        return doc
                continue
            for target in targets:
                for doc, tokens in self.searchable_entries(collection):
                    if target in tokens and accept(doc):
                        return doc
        return None

    def packs_by_type(self) -> dict[str, list[str]]:
        if self._snapshot is None:
            return {}
        return self._snapshot.packs_by_type

    def warn_missing_once(self, collection: str) -> None:
        if collection in self._missing_warned:
            return
        self._missing_warned.add(collection)
        logger.warning("[CollectionCache] Collection not available: %s", collection)

    def status(self) -> dict[str, Any]:
        snapshot = self._snapshot
        if snapshot is None:
            return {
                "loaded": False,
                "generation": self._generation,
                "generated_at": None,
                "age_seconds": None,
                "cache_version": None,
                "collection_count": 0,
                "document_count": 0,
                "packs_by_type": {},
            }

        age_seconds: float | None = None
        if snapshot.generated_at:
            try:
                generated = dateparser.isoparse(snapshot.generated_at)
            except (ValueError, TypeError):
                generated = None
            if generated is not None:
                if generated.tzinfo is None:
                    generated = generated.replace(tzinfo=timezone.utc)
                age_seconds = round(max(0.0, (datetime.now(timezone.utc) - generated).total_seconds()), 1)

        return {
            "loaded": True,
            "generation": self._generation,
            "generated_at": snapshot.generated_at or None,
            "age_seconds": age_seconds,
            "cache_version": snapshot.cache_version or None,
            "collection_count": len(snapshot.packs),
            "document_count": snapshot.document_count,
            "packs_by_type": {kind: list(names) for kind, names in snapshot.packs_by_type.items()},
        }
