"""Shared fixtures: raw document builders, snapshots and an in-memory host store."""

from __future__ import annotations

import random
from typing import Any

import pytest

from npcforge.data.collection_cache import CollectionCache, snapshot_from_dict
from npcforge.data.compendium_source import CompendiumSource
from npcforge.data.host_client import HostStoreError
from npcforge.data.lookup_index import LookupIndexManager
from npcforge.data.matching import MatchingEngine
from npcforge.data.models import CollectionInfo, CompendiumSnapshot
from npcforge.data.text import SearchTokenizer


def raw_doc(
    doc_id: str,
    name: str,
    doc_type: str = "weapon",
    *,
    price: Any = None,
    rarity: str = "",
    properties: list[str] | None = None,
    **system: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {"rarity": rarity, "properties": properties or [], **system}
    if price is not None:
        body["price"] = price
    return {"_id": doc_id, "name": name, "type": doc_type, "system": body}


def index_projection(doc: dict[str, Any]) -> dict[str, Any]:
    system = doc.get("system") or {}
    return {
        "_id": doc["_id"],
        "name": doc["name"],
        "type": doc["type"],
        "system": {key: system[key] for key in ("rarity", "properties", "price") if key in system},
    }


def snapshot_for(
    packs: dict[str, list[dict[str, Any]]],
    labels: dict[str, str] | None = None,
    generated_at: str = "2026-01-15T10:00:00+00:00",
) -> CompendiumSnapshot:
    labels = labels or {}
    return snapshot_from_dict({
        "generatedAt": generated_at,
        "cacheVersion": "1.4.0-4.0.0-%d" % len(packs),
        "packs": {
            name: {
                "label": labels.get(name, name),
                "documentType": "Item",
                "entries": [index_projection(doc) for doc in docs],
                "documents": {doc["_id"]: doc for doc in docs},
            }
            for name, docs in packs.items()
        },
    })


class FakeHostStore:
    """In-memory host store with failure injection."""

    def __init__(
        self,
        collections: dict[str, list[dict[str, Any]]] | None = None,
        *,
        labels: dict[str, str] | None = None,
        failing: set[str] | None = None,
        failing_documents: set[str] | None = None,
        extra_infos: list[CollectionInfo] | None = None,
    ) -> None:
        self.collections = collections or {}
        self.labels = labels or {}
        self.failing = failing or set()
        self.failing_documents = failing_documents or set()
        self.extra_infos = extra_infos or []
        self.index_calls: list[str] = []
        self.document_calls: list[tuple[str, str]] = []

    def _check(self, collection: str) -> list[dict[str, Any]]:
        if collection in self.failing:
            raise HostStoreError("Host store error (500).", status_code=500)
        if collection not in self.collections:
            raise HostStoreError("Host store error (404).", status_code=404)
        return self.collections[collection]

    async def list_collections(self) -> list[CollectionInfo]:
        infos = [
            CollectionInfo(name=name, document_type="Item", system_id="dnd5e", title=self.labels.get(name, ""))
            for name in self.collections
        ]
        return infos + list(self.extra_infos)

    async def get_index(self, collection: str, fields: list[str]) -> list[dict[str, Any]]:
        self.index_calls.append(collection)
        return [index_projection(doc) for doc in self._check(collection)]

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self.document_calls.append((collection, doc_id))
        for doc in self._check(collection):
            if doc["_id"] == doc_id:
                return doc
        return None

    async def get_documents(self, collection: str) -> list[dict[str, Any]]:
        docs = self._check(collection)
        if collection in self.failing_documents:
            raise HostStoreError("Host store timed out.")
        return list(docs)


@pytest.fixture
def make_doc():
    return raw_doc


@pytest.fixture
def make_snapshot():
    return snapshot_for


@pytest.fixture
def fake_store_factory():
    return FakeHostStore


@pytest.fixture
def engine_factory():
    """Build a cache + engine stack around an optional snapshot and store."""

    def build(
        snapshot: CompendiumSnapshot | None = None,
        store: FakeHostStore | None = None,
        *,
        locale: str = "en",
        seed: int = 7,
    ) -> MatchingEngine:
        cache = CollectionCache(snapshot, tokenizer=SearchTokenizer(max_entries=1000))
        source = CompendiumSource(store or FakeHostStore(), cache, locale=locale, index_ttl_s=60)
        manager = LookupIndexManager(cache, max_keys=8)
        return MatchingEngine(cache, manager, source, locale=locale, rng=random.Random(seed))

    return build
