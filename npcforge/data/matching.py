"""Layered resolution of item references to compendium documents.

Strategies run in a fixed order and the first one that yields a document
wins:

1. ``cached-localized``: scored pick among cached documents hit by the
   requested name or its lookup hint (exact, partial and fuzzy matches,
   display-script preference)
2. ``exact-pack-name``: exact name match against live collection indexes
3. ``cached-exact-name``: exact name match against the collection cache
4. ``cached-keywords``: keyword-overlap pick among cached documents
5. ``fuzzy-keywords``: keyword-filtered, budget-aware pick from live indexes

The outcome always records the last strategy that was attempted, so a miss
still carries provenance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import random
from typing import Any, Iterable
from uuid import uuid4

from .budget import BudgetTier, is_allowed_item, is_within_budget, normalize_budget, pick_by_budget
from .collection_cache import CollectionCache
from .compendium_source import CompendiumSource
from .lookup_index import LookupIndexManager
from .models import Document, IndexEntry
from .text import (
    bigram_similarity,
    detect_script,
    expand_term,
    lookup_keywords,
    script_for_locale,
)

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.72
MIN_PARTIAL_LENGTH = 3

NAME_EXACT_SCORE = 90
LOOKUP_EXACT_SCORE = 70
NAME_PARTIAL_SCORE = 15
LOOKUP_PARTIAL_SCORE = 12
NAME_FUZZY_SCORE = 18
LOOKUP_FUZZY_SCORE = 14
SCRIPT_BONUS = 25
BUDGET_BONUS = 1
KEYWORD_HIT_SCORE = 10


class MatchStrategy(StrEnum):
    CACHED_LOCALIZED = "cached-localized"
    EXACT_PACK_NAME = "exact-pack-name"
    CACHED_EXACT_NAME = "cached-exact-name"
    CACHED_KEYWORDS = "cached-keywords"
    FUZZY_KEYWORDS = "fuzzy-keywords"


@dataclass(frozen=True)
class ItemReference:
    """A request for one item: display name plus optional cross-locale hint."""

    name: str
    lookup: str = ""
    quantity: int | None = None
    price_gp: float | None = None

    def terms(self) -> list[str]:
        out = [self.name.strip()]
        lookup = self.lookup.strip()
        if lookup and lookup.lower() != out[0].lower():
            out.append(lookup)
        return [term for term in out if term]

    def name_variants(self) -> list[str]:
        variants: list[str] = []
        for term in self.terms():
            for variant in expand_term(term):
                if variant not in variants:
                    variants.append(variant)
        return variants

    def keywords(self) -> list[str]:
        out: list[str] = []
        for term in self.terms():
            for keyword in lookup_keywords(term):
                if keyword not in out:
                    out.append(keyword)
        return out


@dataclass
class ResolutionGroup:
    key: str
    references: list[ItemReference]
    packs: list[str]
    allowed_types: frozenset[str]
    equip: bool = False
    ensure_feature_activities: bool = False
    allow_magic: bool = True

    def __post_init__(self) -> None:
        types = frozenset(str(t).strip().lower() for t in self.allowed_types if str(t).strip())
        if not types:
            raise ValueError(f"Resolution group '{self.key}' has no allowed types")
        self.allowed_types = types
        self.packs = list(dict.fromkeys(p for p in self.packs if p))

    def accepts(self, item: IndexEntry) -> bool:
        return item.type in self.allowed_types and is_allowed_item(item, self.allow_magic)


@dataclass(frozen=True)
class MatchMeta:
    matched_name: str
    matched_type: str
    matched_pack: str
    strategy: MatchStrategy

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched_name": self.matched_name,
            "matched_type": self.matched_type,
            "matched_pack": self.matched_pack,
            "strategy": str(self.strategy),
        }


@dataclass
class MatchResult:
    item: dict[str, Any]
    meta: MatchMeta


@dataclass
class ResolutionOutcome:
    result: MatchResult | None = None
    strategy: MatchStrategy | None = None

    @property
    def found(self) -> bool:
        return self.result is not None


@dataclass
class _Scored:
    doc: Document
    score: float
    in_budget: bool
    length_gap: int = field(default=0)


def build_basic_activities(name: str, activation_type: str = "action") -> dict[str, Any]:
    """Single utility activity used for features that ship without any."""
    activity_id = uuid4().hex[:16]
    return {
        activity_id: {
            "_id": activity_id,
            "type": "utility",
            "name": name or "",
            "activation": {"type": activation_type, "value": 1, "condition": "", "override": False},
            "consumption": {"targets": [], "scaling": {"allowed": False, "max": ""}, "spellSlot": True},
            "description": {"chatFlavor": ""},
            "duration": {"concentration": False, "value": "", "units": "inst", "special": "", "override": False},
            "effects": [],
            "range": {"value": "", "units": "ft", "special": "", "override": False},
            "target": {
                "template": {
                    "count": "",
                    "contiguous": False,
                    "type": "",
                    "size": "",
                    "width": "",
                    "height": "",
                    "units": "ft",
                },
                "affects": {"count": "", "type": "self", "choice": False, "special": ""},
                "prompt": True,
                "override": False,
            },
            "uses": {"spent": 0, "recovery": [], "max": ""},
            "sort": 0,
            "flags": {},
            "visibility": {
                "level": {},
                "requireAttunement": False,
                "requireIdentification": False,
                "requireMagic": False,
            },
            "roll": {"prompt": False, "visible": False},
        }
    }


def ensure_activities(item: dict[str, Any]) -> dict[str, Any]:
    system = item.get("system")
    if not isinstance(system, dict):
        return item
    if system.get("activities"):
        return item
    system["activities"] = build_basic_activities(str(item.get("name") or ""))
    if not system.get("activation"):
        system["activation"] = {"type": "action", "value": 1, "condition": ""}
    return item


def prepare_item(doc: Document, group: ResolutionGroup) -> dict[str, Any]:
    """Clone a matched document and apply the group's item adjustments."""
    item = doc.clone()
    system = item.get("system")
    if group.equip and isinstance(system, dict):
        system["equipped"] = True
        if item.get("type") == "weapon":
            system["proficient"] = True
    if group.ensure_feature_activities and item.get("type") == "feat":
        ensure_activities(item)
    return item


def _partial_match(terms: Iterable[str], tokens: Iterable[str]) -> bool:
    token_list = list(tokens)
    for term in terms:
        if len(term) < MIN_PARTIAL_LENGTH:
            continue
        for token in token_list:
            if term in token or (len(token) >= MIN_PARTIAL_LENGTH and token in term):
                return True
    return False


def _best_similarity(query: str, doc: Document) -> float:
    if not query:
        return 0.0
    values = [doc.name]
    if doc.original_name:
        values.append(doc.original_name)
    return max(bigram_similarity(query, value) for value in values)


class MatchingEngine:
    """Resolves references against the cache first, then the live host store."""

    def __init__(
        self,
        cache: CollectionCache,
        index_manager: LookupIndexManager,
        source: CompendiumSource,
        *,
        locale: str = "en",
        rng: random.Random | None = None,
    ) -> None:
        self._cache = cache
        self._indexes = index_manager
        self._source = source
        self._locale = locale
        self._rng = rng or random.Random()

    @property
    def cache(self) -> CollectionCache:
        return self._cache

    @property
    def source(self) -> CompendiumSource:
        return self._source

    @property
    def index_manager(self) -> LookupIndexManager:
        return self._indexes

    def preferred_script(self, reference: ItemReference) -> str | None:
        return script_for_locale(self._locale) or detect_script(reference.name)

    async def resolve_item(
        self,
        reference: ItemReference,
        group: ResolutionGroup,
        budget: BudgetTier | str = BudgetTier.NORMAL,
    ) -> MatchResult | None:
        outcome = await self.resolve(reference, group, budget)
        return outcome.result

    async def resolve(
        self,
        reference: ItemReference,
        group: ResolutionGroup,
        budget: BudgetTier | str = BudgetTier.NORMAL,
    ) -> ResolutionOutcome:
        tier = normalize_budget(budget)
        outcome = ResolutionOutcome()
        if not reference.terms() or not group.packs:
            return outcome

        outcome.strategy = MatchStrategy.CACHED_LOCALIZED
        doc = self._pick_localized(reference, group, tier)
        if doc is not None:
            return self._finish(outcome, doc, group)

        outcome.strategy = MatchStrategy.EXACT_PACK_NAME
        doc = await self._exact_from_packs(reference, group)
        if doc is not None:
            return self._finish(outcome, doc, group)

        outcome.strategy = MatchStrategy.CACHED_EXACT_NAME
        doc = self._exact_from_cache(reference, group)
        if doc is not None:
            return self._finish(outcome, doc, group)

        keywords = reference.keywords()
        if not keywords:
            logger.debug("[Matching] No match and no keywords: name=%s", reference.name)
            return outcome

        outcome.strategy = MatchStrategy.CACHED_KEYWORDS
        doc = self._pick_by_keywords(reference, keywords, group, tier)
        if doc is not None:
            return self._finish(outcome, doc, group)

        outcome.strategy = MatchStrategy.FUZZY_KEYWORDS
        doc = await self._fuzzy_from_packs(keywords, group, tier)
        if doc is not None:
            return self._finish(outcome, doc, group)

        logger.debug("[Matching] No match: name=%s lookup=%s group=%s", reference.name, reference.lookup, group.key)
        return outcome

    def _finish(self, outcome: ResolutionOutcome, doc: Document, group: ResolutionGroup) -> ResolutionOutcome:
        outcome.result = MatchResult(
            item=prepare_item(doc, group),
            meta=MatchMeta(
                matched_name=doc.name,
                matched_type=doc.type,
                matched_pack=doc.collection,
                strategy=outcome.strategy,
            ),
        )
        return outcome

    def _candidates(self, terms: list[str], group: ResolutionGroup) -> list[Document]:
        if not self._cache.is_loaded():
            return []
        index = self._indexes.get_index(group.packs, group.allowed_types)
        docs = self._indexes.collect_candidates(index, terms)
        return [doc for doc in docs if is_allowed_item(doc, group.allow_magic)]

    @staticmethod
    def _length_gap(doc: Document, terms: list[str]) -> int:
        return min(abs(len(doc.name) - len(term)) for term in terms)

    @staticmethod
    def _best(scored: list[_Scored]) -> Document | None:
        if not scored:
            return None
        scored.sort(key=lambda s: (-s.score, not s.in_budget, s.length_gap))
        return scored[0].doc

    def _pick_localized(
        self,
        reference: ItemReference,
        group: ResolutionGroup,
        tier: BudgetTier,
    ) -> Document | None:
        terms = reference.terms()
        candidates = self._candidates(terms, group)
        if not candidates:
            return None

        name_terms = set(expand_term(reference.name))
        lookup_terms = set(expand_term(reference.lookup)) if reference.lookup else set()
        preferred = self.preferred_script(reference)
        tokenizer = self._cache.tokenizer

        scored: list[_Scored] = []
        for doc in candidates:
            tokens = tokenizer.tokens(doc)
            name_partial = _partial_match(name_terms, tokens)
            lookup_partial = _partial_match(lookup_terms, tokens)
            name_fuzzy = _best_similarity(reference.name, doc)
            lookup_fuzzy = _best_similarity(reference.lookup, doc)
            if not name_partial and not lookup_partial and max(name_fuzzy, lookup_fuzzy) < FUZZY_THRESHOLD:
                continue

            score = 0.0
            if tokens & name_terms:
                score += NAME_EXACT_SCORE
            if lookup_terms and tokens & lookup_terms:
                score += LOOKUP_EXACT_SCORE
            if name_partial:
                score += NAME_PARTIAL_SCORE
            if lookup_partial:
                score += LOOKUP_PARTIAL_SCORE
            if name_fuzzy >= FUZZY_THRESHOLD:
                score += NAME_FUZZY_SCORE * name_fuzzy
            if lookup_fuzzy >= FUZZY_THRESHOLD:
                score += LOOKUP_FUZZY_SCORE * lookup_fuzzy
            if preferred and detect_script(doc.name) == preferred:
                score += SCRIPT_BONUS
            in_budget = is_within_budget(doc.price_cp, tier, group.allow_magic)
            if in_budget:
                score += BUDGET_BONUS
            scored.append(_Scored(doc, score, in_budget, self._length_gap(doc, terms)))

        return self._best(scored)

    async def _exact_from_packs(self, reference: ItemReference, group: ResolutionGroup) -> Document | None:
        targets = set(reference.name_variants())
        tokenizer = self._cache.tokenizer
        for pack in group.packs:
            entries = await self._source.get_pack_index(pack)
            for entry in entries:
                if not group.accepts(entry) or not (tokenizer.tokens(entry) & targets):
                    continue
                doc = await self._source.fetch_document(pack, entry.id)
                if doc is not None and group.accepts(doc):
                    return doc
        return None

    def _exact_from_cache(self, reference: ItemReference, group: ResolutionGroup) -> Document | None:
        for variant in reference.name_variants():
            doc = self._cache.get_document_by_name(group.packs, variant, accept=group.accepts)
            if doc is not None:
                return doc
        return None

    def _pick_by_keywords(
        self,
        reference: ItemReference,
        keywords: list[str],
        group: ResolutionGroup,
        tier: BudgetTier,
    ) -> Document | None:
        candidates = self._candidates(keywords, group)
        if not candidates:
            return None

        expanded = [expand_term(keyword) for keyword in keywords]
        required = 2 if len(keywords) >= 2 else 1
        terms = reference.terms()
        tokenizer = self._cache.tokenizer

        scored: list[_Scored] = []
        for doc in candidates:
            tokens = tokenizer.tokens(doc)
            hits = sum(1 for variants in expanded if _partial_match(variants, tokens))
            if hits < required:
                continue
            in_budget = is_within_budget(doc.price_cp, tier, group.allow_magic)
            score = hits * KEYWORD_HIT_SCORE + (BUDGET_BONUS if in_budget else 0)
            scored.append(_Scored(doc, score, in_budget, self._length_gap(doc, terms)))

        return self._best(scored)

    async def _fuzzy_from_packs(
        self,
        keywords: list[str],
        group: ResolutionGroup,
        tier: BudgetTier,
    ) -> Document | None:
        expanded: list[str] = []
        for keyword in keywords:
            for variant in expand_term(keyword):
                if variant not in expanded:
                    expanded.append(variant)

        tokenizer = self._cache.tokenizer
        candidates: list[IndexEntry] = []
        for pack in group.packs:
            for entry in await self._source.get_pack_index(pack):
                if group.accepts(entry) and _partial_match(expanded, tokenizer.tokens(entry)):
                    candidates.append(entry)
        if not candidates:
            return None

        if all(self._source.price_for_entry(entry) is None for entry in candidates):
            sampled = await self._source.sample_priced_documents(candidates, rng=self._rng)
            if sampled:
                return pick_by_budget(sampled, tier, group.allow_magic, lambda doc: doc.price_cp, rng=self._rng)

        picked = pick_by_budget(
            candidates,
            tier,
            group.allow_magic,
            self._source.price_for_entry,
            rng=self._rng,
        )
        if picked is None:
            return None
        return await self._source.fetch_document(picked.collection, picked.id)
