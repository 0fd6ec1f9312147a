"""Data access, caching and matching for compendium lookups."""

from .budget import BudgetTier, budget_range, is_allowed_item, is_within_budget, normalize_budget, pick_by_budget
from .cache import BoundedCache, TTLCache
from .cache_builder import CacheBuilder, PrivilegeError, RebuildInProgressError, RebuildResult
from .collection_cache import (
    CollectionCache,
    SnapshotLoadResult,
    build_packs_by_type,
    load_snapshot,
    save_snapshot,
)
from .compendium_source import CompendiumSource
from .config import CompendiumConfig, HostStoreConfig
from .host_client import HostStore, HostStoreError, HttpHostStore
from .lookup_index import LookupIndex, LookupIndexManager
from .matching import (
    ItemReference,
    MatchingEngine,
    MatchMeta,
    MatchResult,
    MatchStrategy,
    ResolutionGroup,
    ResolutionOutcome,
)
from .models import CollectionInfo, CompendiumSnapshot, Document, IndexEntry, PackSnapshot

__all__ = [
    "BudgetTier",
    "budget_range",
    "is_allowed_item",
    "is_within_budget",
    "normalize_budget",
    "pick_by_budget",
    "BoundedCache",
    "TTLCache",
    "CacheBuilder",
    "PrivilegeError",
    "RebuildInProgressError",
    "RebuildResult",
    "CollectionCache",
    "SnapshotLoadResult",
    "build_packs_by_type",
    "load_snapshot",
    "save_snapshot",
    "CompendiumSource",
    "CompendiumConfig",
    "HostStoreConfig",
    "HostStore",
    "HostStoreError",
    "HttpHostStore",
    "LookupIndex",
    "LookupIndexManager",
    "ItemReference",
    "MatchingEngine",
    "MatchMeta",
    "MatchResult",
    "MatchStrategy",
    "ResolutionGroup",
    "ResolutionOutcome",
    "CollectionInfo",
    "CompendiumSnapshot",
    "Document",
    "IndexEntry",
    "PackSnapshot",
]
