"""Rebuilds the compendium cache snapshot from the host store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
import threading
from typing import Any, Callable, Iterable, Literal
import uuid

from .collection_cache import CollectionCache, build_packs_by_type, save_snapshot
from .compendium_source import CompendiumSource, unique_names
from .config import CACHE_DOC_TYPES, DEFAULT_COLLECTIONS, INDEX_FIELDS, CompendiumConfig
from .host_client import HostStore, HostStoreError
from .lookup_index import LookupIndexManager
from .models import CollectionInfo, CompendiumSnapshot, Document, IndexEntry, PackSnapshot

logger = logging.getLogger(__name__)

PROGRESS_MILESTONES = 5

ProgressCallback = Callable[[int, int], None]


class PrivilegeError(PermissionError):
    """Raised when a non-privileged caller requests a cache rebuild."""


class RebuildInProgressError(RuntimeError):
    """Raised when a rebuild is requested while another one is running."""


@dataclass
class CollectionBuildResult:
    name: str
    pack: PackSnapshot | None = None
    error: str | None = None


@dataclass
class RebuildResult:
    snapshot: CompendiumSnapshot
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.snapshot.generated_at,
            "cache_version": self.snapshot.cache_version,
            "collection_count": len(self.snapshot.packs),
            "document_count": self.snapshot.document_count,
            "packs_by_type": self.snapshot.packs_by_type,
            "errors": list(self.errors),
        }


class CacheBuilder:
    """Privileged batch job that re-reads collections into a new snapshot."""

    def __init__(
        self,
        store: HostStore,
        cache: CollectionCache,
        *,
        config: CompendiumConfig | None = None,
        source: CompendiumSource | None = None,
        index_manager: LookupIndexManager | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or CompendiumConfig()
        self._source = source
        self._index_manager = index_manager
        self.progress_callback = progress_callback
        self._rebuild_lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._progress: dict[str, Any] = self._empty_progress_state()

    def _empty_progress_state(self) -> dict[str, Any]:
        return {
            "run_id": None,
            "status": "idle",
            "stage": "idle",
            "message": "No cache rebuild in progress",
            "total": 0,
            "completed": 0,
            "progress_pct": 0.0,
            "errors": [],
            "started_at": None,
            "updated_at": None,
            "finished_at": None,
        }

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _start_progress(self, run_id: str) -> None:
        now = self._now_iso()
        with self._progress_lock:
            self._progress = {
                **self._empty_progress_state(),
                "run_id": run_id,
                "status": "running",
                "stage": "collecting",
                "message": "Collecting collection names...",
                "started_at": now,
                "updated_at": now,
            }

    def _set_progress(self, *, run_id: str, **changes: Any) -> None:
        with self._progress_lock:
            if self._progress.get("run_id") != run_id:
                return
            for key, value in changes.items():
                if key == "progress_pct":
                    self._progress[key] = max(0.0, min(100.0, float(value)))
                elif key == "errors":
                    self._progress[key] = list(value)
                else:
                    self._progress[key] = value
            self._progress["updated_at"] = self._now_iso()

    def _finalize_progress(self, *, run_id: str, status: Literal["completed", "failed"], message: str) -> None:
        now = self._now_iso()
        with self._progress_lock:
            if self._progress.get("run_id") != run_id:
                return
            self._progress["status"] = status
            self._progress["stage"] = status
            self._progress["message"] = message
            self._progress["progress_pct"] = 100.0
            self._progress["updated_at"] = now
            self._progress["finished_at"] = now

    def get_progress(self) -> dict[str, Any]:
        with self._progress_lock:
            snapshot = dict(self._progress)
            snapshot["errors"] = list(snapshot.get("errors") or [])
            snapshot["progress_pct"] = round(float(snapshot.get("progress_pct") or 0.0), 2)
            return snapshot

    def is_running(self) -> bool:
        return self._rebuild_lock.locked()

    async def collect_collection_names(self, requested: Iterable[str] | None = None) -> tuple[list[str], dict[str, CollectionInfo]]:
        """Defaults, caller-supplied names and every host Item collection of this system."""
        names: list[str] = []
        for defaults in DEFAULT_COLLECTIONS.values():
            names.extend(defaults)
        names.extend(requested or [])

        listed: dict[str, CollectionInfo] = {}
        try:
            for info in await self._store.list_collections():
                listed[info.name] = info
                if info.document_type != "Item":
                    continue
                if info.system_id and info.system_id != self._config.system_id:
                    continue
                names.append(info.name)
        except HostStoreError as exc:
            logger.warning("[CacheBuilder] Could not list collections: %s", exc)

        return unique_names(names), listed

    async def _build_collection(self, name: str, info: CollectionInfo | None) -> CollectionBuildResult:
        try:
            raw_entries = await self._store.get_index(name, INDEX_FIELDS)
        except HostStoreError as exc:
            if exc.not_found:
                return CollectionBuildResult(name=name, error=f"collection not found: {name}")
            return CollectionBuildResult(name=name, error=f"index fetch failed for {name}: {exc}")

        documents: dict[str, Document] = {}
        try:
            for raw in await self._store.get_documents(name):
                doc = Document.from_raw(raw, name)
                if doc.id and doc.type in CACHE_DOC_TYPES:
                    documents[doc.id] = doc
        except HostStoreError as exc:
            logger.warning("[CacheBuilder] Failed to read documents: collection=%s error=%s", name, exc)

        pack = PackSnapshot(
            name=name,
            label=info.title if info else "",
            document_type=info.document_type if info else "Item",
            entries=[IndexEntry.from_raw(raw, name) for raw in raw_entries],
            documents=documents,
        )
        return CollectionBuildResult(name=name, pack=pack)

    async def rebuild_cache(
        self,
        collection_names: Iterable[str] | None = None,
        *,
        privileged: bool,
        concurrency: int | None = None,
    ) -> RebuildResult:
        if not privileged:
            logger.warning("[CacheBuilder] Rebuild rejected: caller is not privileged")
            raise PrivilegeError("Only the game master can rebuild the compendium cache")
        if not self._rebuild_lock.acquire(blocking=False):
            raise RebuildInProgressError("A cache rebuild is already running")

        run_id = uuid.uuid4().hex
        self._start_progress(run_id)
        try:
            result = await self._run(run_id, collection_names, concurrency or self._config.build_concurrency)
        except Exception as exc:
            logger.exception("[CacheBuilder] Rebuild failed")
            self._set_progress(run_id=run_id, errors=[*self.get_progress()["errors"], str(exc)])
            self._finalize_progress(run_id=run_id, status="failed", message=f"Cache rebuild failed: {exc}")
            raise
        finally:
            self._rebuild_lock.release()

        self._finalize_progress(
            run_id=run_id,
            status="completed",
            message=f"Cache rebuilt: {len(result.snapshot.packs)} collections",
        )
        return result

    async def _run(self, run_id: str, requested: Iterable[str] | None, concurrency: int) -> RebuildResult:
        names, listed = await self.collect_collection_names(requested)
        total = len(names)
        self._set_progress(
            run_id=run_id,
            stage="fetching",
            message=f"Reading {total} collections...",
            total=total,
        )
        logger.info("[CacheBuilder] Rebuilding cache: collections=%d concurrency=%d", total, concurrency)

        results: list[CollectionBuildResult | None] = [None] * total
        errors: list[str] = []
        step = max(1, math.ceil(total / PROGRESS_MILESTONES))
        cursor = 0
        completed = 0

        async def worker() -> None:
            nonlocal cursor, completed
            while cursor < total:
                i = cursor
                cursor += 1
                name = names[i]
                if listed and name not in listed:
                    results[i] = CollectionBuildResult(name=name, error=f"collection not found: {name}")
                else:
                    try:
                        results[i] = await self._build_collection(name, listed.get(name))
                    except Exception as exc:
                        logger.exception("[CacheBuilder] Collection build failed: collection=%s", name)
                        results[i] = CollectionBuildResult(name=name, error=f"failed to read {name}: {exc}")
                error = results[i].error
                if error:
                    errors.append(error)
                    logger.warning("[CacheBuilder] %s", error)

                completed += 1
                if completed % step == 0 or completed == total:
                    pct = completed * 100.0 / total
                    self._set_progress(
                        run_id=run_id,
                        completed=completed,
                        progress_pct=pct,
                        errors=errors,
                        message=f"Read {completed}/{total} collections",
                    )
                    logger.info("[CacheBuilder] Progress: %d/%d collections (%.0f%%)", completed, total, pct)
                    if self.progress_callback:
                        self.progress_callback(completed, total)

        workers = max(1, min(concurrency, total or 1))
        await asyncio.gather(*(worker() for _ in range(workers)))

        packs = {r.name: r.pack for r in results if r is not None and r.pack is not None}
        snapshot = CompendiumSnapshot(
            generated_at=self._now_iso(),
            cache_version=f"{self._config.module_version}-{self._config.system_version}-{len(packs)}",
            packs=packs,
            packs_by_type=build_packs_by_type(packs),
        )

        self._set_progress(run_id=run_id, stage="saving", message="Saving snapshot...", errors=errors)
        save_snapshot(self._config.cache_path, snapshot)
        self.install(snapshot)
        logger.info(
            "[CacheBuilder] Cache rebuilt: collections=%d documents=%d errors=%d",
            len(packs),
            snapshot.document_count,
            len(errors),
        )
        return RebuildResult(snapshot=snapshot, errors=errors)

    def install(self, snapshot: CompendiumSnapshot) -> None:
        self._cache.set_snapshot(snapshot)
        if self._index_manager is not None:
            self._index_manager.clear()
        if self._source is not None:
            self._source.clear_index_memo()
