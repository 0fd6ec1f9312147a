"""Token and word indexes over the collection cache, scoped per request shape."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable

from .cache import BoundedCache
from .collection_cache import CollectionCache
from .models import Document
from .text import expand_term, search_words

logger = logging.getLogger(__name__)

IndexKey = tuple[tuple[str, ...], tuple[str, ...]]


@dataclass
class LookupIndex:
    docs: list[Document] = field(default_factory=list)
    token_to_docs: dict[str, list[Document]] = field(default_factory=dict)
    word_to_docs: dict[str, list[Document]] = field(default_factory=dict)


def make_index_key(collections: Iterable[str], allowed_types: Iterable[str]) -> IndexKey:
    types = tuple(sorted({str(t).strip().lower() for t in allowed_types if str(t).strip()}))
    if not types:
        raise ValueError("allowed_types must not be empty")
    return tuple(sorted({c for c in collections if c})), types


class LookupIndexManager:
    """Builds and memoizes ``LookupIndex`` objects.

    The memo is tied to the identity of the cache snapshot: as soon as a
    different snapshot object is installed every index is rebuilt on demand.
    The key table is capped and cleared as a whole on overflow.
    """

    def __init__(self, cache: CollectionCache, max_keys: int = 32) -> None:
        self._cache = cache
        self._indexes = BoundedCache(max_entries=max_keys)
        self._snapshot_ref: object | None = None
        self.build_count = 0

    @property
    def overflow_clears(self) -> int:
        return self._indexes.overflow_clears

    def clear(self) -> None:
        self._indexes.clear()
        self._snapshot_ref = None

    def get_index(self, collections: Iterable[str], allowed_types: Iterable[str]) -> LookupIndex:
        key = make_index_key(collections, allowed_types)

        snapshot = self._cache.snapshot
        if snapshot is not self._snapshot_ref:
            self._indexes.clear()
            self._snapshot_ref = snapshot

        index = self._indexes.get(key)
        if index is None:
            index = self._build(key)
            self._indexes.set(key, index)
        return index

    def _build(self, key: IndexKey) -> LookupIndex:
        collections, types = key
        allowed = set(types)
        tokenizer = self._cache.tokenizer
        index = LookupIndex()

        for doc in self._cache.get_documents_for_collections(collections):
            if doc.type not in allowed:
                continue
            index.docs.append(doc)
            tokens = tokenizer.tokens(doc)
            for token in tokens:
                index.token_to_docs.setdefault(token, []).append(doc)
            for word in search_words(tokens):
                index.word_to_docs.setdefault(word, []).append(doc)

        self.build_count += 1
        logger.debug(
            "[LookupIndex] Built index: collections=%d types=%s docs=%d tokens=%d words=%d",
            len(collections),
            ",".join(types),
            len(index.docs),
            len(index.token_to_docs),
            len(index.word_to_docs),
        )
        return index

    def collect_candidates(
        self,
        index: LookupIndex,
        terms: Iterable[str],
        fallback_to_all: bool = False,
    ) -> list[Document]:
        """Union of documents hit by any expanded term, in first-hit order."""
        seen: set[int] = set()
        out: list[Document] = []

        def add(docs: list[Document] | None) -> None:
            for doc in docs or ():
                if id(doc) not in seen:
                    seen.add(id(doc))
                    out.append(doc)

        for term in terms:
            variants = expand_term(term)
            for variant in variants:
                add(index.token_to_docs.get(variant))
            for word in search_words(variants):
                add(index.word_to_docs.get(word))

        if not out and fallback_to_all:
            return list(index.docs)
        return out
