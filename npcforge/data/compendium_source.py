"""Live compendium access layered over the collection cache."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Iterable

from .cache import TTLCache
from .collection_cache import CollectionCache
from .config import DEFAULT_COLLECTIONS, INDEX_FIELDS, HostStoreConfig
from .host_client import HostStore, HostStoreError
from .models import Document, IndexEntry

logger = logging.getLogger(__name__)

PRICE_SAMPLE_LIMIT = 12

_RU_PACK_RE = re.compile(r"(^|[\s._/-])(ru|rus)([\s._/-]|$)|russian|рус|кирил|cyril", re.IGNORECASE)
_EN_PACK_RE = re.compile(r"(^|[\s._/-])(en|eng)([\s._/-]|$)|english|англ", re.IGNORECASE)


def unique_names(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(name for name in names if name))


class CompendiumSource:
    """Index and document access with cache-first fallbacks.

    Host failures never propagate: a failed index is an empty list and a
    failed document fetch is ``None``.
    """

    def __init__(
        self,
        store: HostStore,
        cache: CollectionCache,
        *,
        locale: str = "en",
        index_ttl_s: float | None = None,
        default_collections: dict[str, list[str]] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._locale = locale
        self._defaults = default_collections or DEFAULT_COLLECTIONS
        ttl = index_ttl_s if index_ttl_s is not None else HostStoreConfig().index_ttl_s
        self._index_memo = TTLCache(ttl_s=ttl)

    @property
    def cache(self) -> CollectionCache:
        return self._cache

    @property
    def store(self) -> HostStore:
        return self._store

    def clear_index_memo(self) -> None:
        self._index_memo.clear()

    @staticmethod
    def _entries_have_price(entries: list[IndexEntry]) -> bool:
        sample = entries[0] if entries else None
        if sample is None:
            return False
        system = sample.raw.get("system")
        return isinstance(system, dict) and system.get("price") is not None

    async def get_pack_index(self, collection: str) -> list[IndexEntry]:
        memo = self._index_memo.get(collection)
        if memo is not None:
            return memo

        cached = self._cache.get_index_entries(collection)
        if cached and self._entries_have_price(cached):
            self._index_memo.set(collection, cached)
            return cached

        try:
            raw_entries = await self._store.get_index(collection, INDEX_FIELDS)
        except HostStoreError as exc:
            if exc.not_found:
                self._cache.warn_missing_once(collection)
                self._index_memo.set(collection, [])
            else:
                logger.warning("[CompendiumSource] Index fetch failed: collection=%s error=%s", collection, exc)
            return []

        entries = [IndexEntry.from_raw(raw, collection) for raw in raw_entries]
        self._index_memo.set(collection, entries)
        return entries

    async def fetch_document(self, collection: str, doc_id: str) -> Document | None:
        cached = self._cache.get_document(collection, doc_id)
        if cached is not None:
            return cached
        try:
            raw = await self._store.get_document(collection, doc_id)
        except HostStoreError as exc:
            logger.warning(
                "[CompendiumSource] Document fetch failed: collection=%s id=%s error=%s",
                collection,
                doc_id,
                exc,
            )
            return None
        if raw is None:
            return None
        return Document.from_raw(raw, collection)

    def price_for_entry(self, entry: IndexEntry) -> int | None:
        if entry.price_cp is not None:
            return entry.price_cp
        cached = self._cache.get_document(entry.collection, entry.id)
        return cached.price_cp if cached is not None else None

    async def sample_priced_documents(
        self,
        entries: list[IndexEntry],
        limit: int = PRICE_SAMPLE_LIMIT,
        rng: random.Random | None = None,
    ) -> list[Document]:
        """Fetch a random subset of documents concurrently and keep the priced ones.

        Used when index entries carry no prices. Failed fetches are skipped.
        """
        if not entries or limit <= 0:
            return []
        rng = rng or random
        subset = rng.sample(entries, min(limit, len(entries)))
        results = await asyncio.gather(
            *(self.fetch_document(entry.collection, entry.id) for entry in subset),
            return_exceptions=True,
        )
        sampled: list[Document] = []
        for entry, result in zip(subset, results):
            if isinstance(result, Exception):
                logger.warning("[CompendiumSource] Price sample failed: key=%s error=%s", entry.key, result)
                continue
            if result is not None and result.price_cp is not None:
                sampled.append(result)
        logger.info("[CompendiumSource] Sampled prices: requested=%d priced=%d", len(subset), len(sampled))
        return sampled

    def packs_for_kind(self, kind: str) -> list[str]:
        derived = self._cache.packs_by_type().get(kind) or []
        packs = unique_names(derived or self._defaults.get(kind, []))
        if kind != "spells" or not packs:
            return packs
        return self._prioritize_by_language(packs, kind)

    def detect_pack_language(self, collection: str, kind: str) -> str:
        label = self._cache.pack_label(collection)
        source = f"{collection} {label}".lower()
        if _RU_PACK_RE.search(source):
            return "ru"
        if (
            collection in self._defaults.get(kind, [])
            or collection.lower().startswith("dnd5e.")
            or _EN_PACK_RE.search(source)
        ):
            return "en"
        return "other"

    def _prioritize_by_language(self, packs: list[str], kind: str) -> list[str]:
        lang = (self._locale or "en")[:2].lower()
        preferred: list[str] = []
        english: list[str] = []
        other: list[str] = []
        for pack in packs:
            pack_lang = self.detect_pack_language(pack, kind)
            if pack_lang == lang:
                preferred.append(pack)
            elif pack_lang == "en":
                english.append(pack)
            else:
                other.append(pack)
        return unique_names(preferred + english + other)
