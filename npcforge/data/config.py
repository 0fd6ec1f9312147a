"""Configuration for host-store access and the compendium cache."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

from npcforge import __version__

DEFAULT_HOST_URL = "http://localhost:30000/api"
_DEFAULT_CACHE_PATH = Path("data/compendium-cache.json")

# Collections used when no snapshot has been built yet.
DEFAULT_COLLECTIONS: dict[str, list[str]] = {
    "weapons": ["dnd5e.items", "dnd5e.equipment24"],
    "loot": ["dnd5e.tradegoods", "dnd5e.items", "dnd5e.equipment24"],
    "spells": ["dnd5e.spells", "dnd5e.spells24"],
    "features": [
        "dnd5e.monsterfeatures",
        "dnd5e.monsterfeatures24",
        "dnd5e.classfeatures",
        "dnd5e.classfeatures24",
    ],
    "classFeatures": ["dnd5e.classfeatures", "dnd5e.classfeatures24"],
}

# Only these document types are materialized into the snapshot.
CACHE_DOC_TYPES = frozenset({
    "weapon",
    "equipment",
    "tool",
    "loot",
    "consumable",
    "feat",
    "spell",
})

INDEX_FIELDS = [
    "type",
    "name",
    "system.rarity",
    "system.properties",
    "system.requirements",
    "system.level",
    "system.price",
]


def _get_cache_path() -> Path:
    explicit = os.getenv("NPCFORGE_CACHE_PATH")
    if explicit:
        return Path(explicit)
    return _DEFAULT_CACHE_PATH


@dataclass(frozen=True)
class HostStoreConfig:
    base_url: str = field(default_factory=lambda: os.getenv("NPCFORGE_HOST_URL", DEFAULT_HOST_URL))
    timeout_s: float = field(default_factory=lambda: float(os.getenv("NPCFORGE_HOST_TIMEOUT_S", "15")))
    index_ttl_s: float = field(default_factory=lambda: float(os.getenv("NPCFORGE_INDEX_TTL_S", "300")))


@dataclass(frozen=True)
class CompendiumConfig:
    cache_path: Path = field(default_factory=_get_cache_path)
    locale: str = field(default_factory=lambda: os.getenv("NPCFORGE_LOCALE", "en").strip().lower())
    resolve_concurrency: int = field(
        default_factory=lambda: int(os.getenv("NPCFORGE_RESOLVE_CONCURRENCY", "4"))
    )
    build_concurrency: int = field(
        default_factory=lambda: int(os.getenv("NPCFORGE_BUILD_CONCURRENCY", "4"))
    )
    lookup_index_cap: int = field(default_factory=lambda: int(os.getenv("NPCFORGE_LOOKUP_INDEX_CAP", "32")))
    token_cache_size: int = field(
        default_factory=lambda: int(os.getenv("NPCFORGE_TOKEN_CACHE_SIZE", "20000"))
    )
    system_id: str = field(default_factory=lambda: os.getenv("NPCFORGE_SYSTEM_ID", "dnd5e"))
    system_version: str = field(default_factory=lambda: os.getenv("NPCFORGE_SYSTEM_VERSION", "unknown"))
    module_version: str = __version__
