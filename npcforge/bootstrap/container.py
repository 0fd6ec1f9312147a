"""Dependency composition root."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from npcforge.application.resolution_service import ResolutionPipeline
from npcforge.data.cache_builder import CacheBuilder
from npcforge.data.collection_cache import CollectionCache, load_snapshot
from npcforge.data.compendium_source import CompendiumSource
from npcforge.data.config import CompendiumConfig, HostStoreConfig
from npcforge.data.host_client import HostStore, HttpHostStore
from npcforge.data.lookup_index import LookupIndexManager
from npcforge.data.matching import MatchingEngine
from npcforge.data.text import SearchTokenizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppContainer:
    """Wired application dependencies."""

    config: CompendiumConfig
    store: HostStore
    cache: CollectionCache
    source: CompendiumSource
    index_manager: LookupIndexManager
    engine: MatchingEngine
    pipeline: ResolutionPipeline
    builder: CacheBuilder


_CONTAINER: AppContainer | None = None


def build_container(
    *,
    store: HostStore | None = None,
    config: CompendiumConfig | None = None,
    host_config: HostStoreConfig | None = None,
    load_persisted: bool = True,
) -> AppContainer:
    config = config or CompendiumConfig()
    host_config = host_config or HostStoreConfig()
    store = store or HttpHostStore(base_url=host_config.base_url, timeout_s=host_config.timeout_s)

    cache = CollectionCache(tokenizer=SearchTokenizer(max_entries=config.token_cache_size))
    if load_persisted:
        loaded = load_snapshot(config.cache_path)
        if loaded.problems:
            logger.warning("[Bootstrap] Snapshot problems: %s", "; ".join(loaded.problems))
        if loaded.snapshot is not None:
            cache.set_snapshot(loaded.snapshot)

    source = CompendiumSource(store, cache, locale=config.locale, index_ttl_s=host_config.index_ttl_s)
    index_manager = LookupIndexManager(cache, max_keys=config.lookup_index_cap)
    engine = MatchingEngine(cache, index_manager, source, locale=config.locale)
    pipeline = ResolutionPipeline(engine, concurrency=config.resolve_concurrency)
    builder = CacheBuilder(store, cache, config=config, source=source, index_manager=index_manager)

    return AppContainer(
        config=config,
        store=store,
        cache=cache,
        source=source,
        index_manager=index_manager,
        engine=engine,
        pipeline=pipeline,
        builder=builder,
    )


def get_container() -> AppContainer:
    global _CONTAINER
    if _CONTAINER is not None:
        return _CONTAINER
    _CONTAINER = build_container()
    return _CONTAINER
