"""Tests for the privileged cache rebuild job."""

import asyncio
import logging
from unittest.mock import MagicMock

import httpx
import pytest

from npcforge.data.cache_builder import CacheBuilder, PrivilegeError, RebuildInProgressError
from npcforge.data.collection_cache import CollectionCache, load_snapshot
from npcforge.data.config import CompendiumConfig
from npcforge.data.host_client import HostStoreError, HttpHostStore
from npcforge.data.models import CollectionInfo
from npcforge.data.text import SearchTokenizer

ITEMS = "dnd5e.items"
ARMORY = "world.armory"


@pytest.fixture
def config(tmp_path):
    return CompendiumConfig(cache_path=tmp_path / "cache" / "compendium.json", system_version="4.0.0")


@pytest.fixture
def store(fake_store_factory, make_doc):
    return fake_store_factory(
        {
            ITEMS: [
                make_doc("w1", "Dagger", price={"value": 2, "denomination": "gp"}),
                make_doc("s1", "Fire Bolt", "spell"),
            ],
            ARMORY: [
                make_doc("x1", "Shield", "equipment"),
                make_doc("k1", "Fighter", "class"),
            ],
        },
        labels={ARMORY: "Armory"},
    )


def _builder(store, config, **kwargs):
    cache = CollectionCache(tokenizer=SearchTokenizer(max_entries=100))
    return CacheBuilder(store, cache, config=config, **kwargs), cache


class TestRebuildCache:
    @pytest.mark.asyncio
    async def test_requires_privilege(self, store, config):
        builder, _ = _builder(store, config)

        with pytest.raises(PrivilegeError):
            await builder.rebuild_cache(privileged=False)

        assert store.index_calls == []
        assert builder.get_progress()["status"] == "idle"

    @pytest.mark.asyncio
    async def test_builds_saves_and_installs_snapshot(self, store, config):
        builder, cache = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        snapshot = result.snapshot
        assert sorted(snapshot.packs) == [ITEMS, ARMORY]
        assert snapshot.cache_version == "1.4.0-4.0.0-2"
        assert snapshot.document_count == 3
        assert cache.snapshot is snapshot
        assert cache.pack_label(ARMORY) == "Armory"
        assert snapshot.packs_by_type["spells"] == [ITEMS]

        loaded = load_snapshot(config.cache_path)
        assert loaded.ok
        assert loaded.snapshot.document_count == 3

    @pytest.mark.asyncio
    async def test_documents_are_filtered_by_type(self, store, config):
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        armory = result.snapshot.packs[ARMORY]
        assert [entry.id for entry in armory.entries] == ["x1", "k1"]
        assert list(armory.documents) == ["x1"]

    @pytest.mark.asyncio
    async def test_unlisted_defaults_are_reported_not_fatal(self, store, config):
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        assert "collection not found: dnd5e.spells24" in result.errors
        assert all(error.startswith("collection not found") for error in result.errors)
        progress = builder.get_progress()
        assert progress["status"] == "completed"
        assert progress["progress_pct"] == 100.0
        assert progress["completed"] == progress["total"]
        assert len(progress["errors"]) == len(result.errors)

    @pytest.mark.asyncio
    async def test_progress_callback_reaches_total(self, store, config):
        calls = []
        builder, _ = _builder(store, config, progress_callback=lambda done, total: calls.append((done, total)))

        await builder.rebuild_cache([ARMORY], privileged=True, concurrency=3)

        total = calls[-1][1]
        assert calls[-1] == (total, total)
        assert [done for done, _ in calls] == sorted(done for done, _ in calls)
        assert len(calls) <= 5

    @pytest.mark.asyncio
    async def test_document_failure_keeps_index_entries(self, fake_store_factory, make_doc, config):
        store = fake_store_factory({ITEMS: [make_doc("w1", "Dagger")]}, failing_documents={ITEMS})
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        pack = result.snapshot.packs[ITEMS]
        assert [entry.id for entry in pack.entries] == ["w1"]
        assert pack.documents == {}

    @pytest.mark.asyncio
    async def test_index_failure_is_a_collection_error(self, fake_store_factory, make_doc, config):
        store = fake_store_factory({ITEMS: [make_doc("w1", "Dagger")], ARMORY: []}, failing={ARMORY})
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        assert ARMORY not in result.snapshot.packs
        assert any(error.startswith(f"index fetch failed for {ARMORY}") for error in result.errors)

    @pytest.mark.asyncio
    async def test_listing_failure_still_reads_requested_collections(self, fake_store_factory, make_doc, config):
        class UnlistableStore(fake_store_factory):
            async def list_collections(self):
                raise HostStoreError("Host store error (503).", status_code=503)

        store = UnlistableStore({
            ITEMS: [make_doc("w1", "Dagger")],
            ARMORY: [make_doc("x1", "Shield", "equipment")],
        })
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache([ARMORY], privileged=True)

        assert sorted(result.snapshot.packs) == [ITEMS, ARMORY]
        assert "collection not found: dnd5e.tradegoods" in result.errors

    @pytest.mark.asyncio
    async def test_concurrent_rebuild_is_refused(self, fake_store_factory, make_doc, config):
        release = asyncio.Event()

        class BlockingStore(fake_store_factory):
            async def get_index(self, collection, fields):
                await release.wait()
                return await super().get_index(collection, fields)

        builder, _ = _builder(BlockingStore({ITEMS: [make_doc("w1", "Dagger")]}), config)

        first = asyncio.create_task(builder.rebuild_cache(privileged=True))
        await asyncio.sleep(0)
        assert builder.is_running()

        with pytest.raises(RebuildInProgressError):
            await builder.rebuild_cache(privileged=True)

        release.set()
        await first
        assert builder.is_running() is False

    @pytest.mark.asyncio
    async def test_unexpected_collection_error_is_recorded(self, fake_store_factory, make_doc, config, caplog):
        class CorruptStore(fake_store_factory):
            async def get_index(self, collection, fields):
                if collection == ARMORY:
                    raise ValueError("corrupt payload")
                return await super().get_index(collection, fields)

        store = CorruptStore({ITEMS: [make_doc("w1", "Dagger")], ARMORY: [make_doc("x1", "Shield", "equipment")]})
        builder, cache = _builder(store, config)

        with caplog.at_level(logging.ERROR, logger="npcforge.data.cache_builder"):
            result = await builder.rebuild_cache(privileged=True)

        assert list(result.snapshot.packs) == [ITEMS]
        assert f"failed to read {ARMORY}: corrupt payload" in result.errors
        assert cache.is_loaded()
        assert builder.get_progress()["status"] == "completed"
        assert any(ARMORY in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_undecodable_http_collection_does_not_abort_rebuild(self, make_doc, config):
        dagger = make_doc("w1", "Dagger", price={"value": 2, "denomination": "gp"})

        def handler(request):
            path = request.url.path
            if path.endswith("/collections"):
                return httpx.Response(200, json=[
                    {"name": "world.bad", "documentType": "Item", "systemId": "dnd5e"},
                    {"name": "world.good", "documentType": "Item", "systemId": "dnd5e"},
                ])
            if "/world.bad/" in path:
                raise httpx.DecodingError("bad gzip stream", request=request)
            if path.endswith("/world.good/index"):
                return httpx.Response(200, json=[{"_id": "w1", "name": "Dagger", "type": "weapon", "system": {}}])
            if path.endswith("/world.good/documents"):
                return httpx.Response(200, json=[dagger])
            return httpx.Response(404, json={"error": "not found"})

        store = HttpHostStore("http://host.test/api", timeout_s=5, transport=httpx.MockTransport(handler))
        builder, _ = _builder(store, config)

        result = await builder.rebuild_cache(privileged=True)

        assert list(result.snapshot.packs) == ["world.good"]
        assert list(result.snapshot.packs["world.good"].documents) == ["w1"]
        assert any(error.startswith("index fetch failed for world.bad") for error in result.errors)

    @pytest.mark.asyncio
    async def test_save_failure_marks_run_failed(self, store, tmp_path):
        occupied = tmp_path / "occupied"
        occupied.mkdir()
        builder, cache = _builder(store, CompendiumConfig(cache_path=occupied))

        with pytest.raises(OSError):
            await builder.rebuild_cache(privileged=True)

        assert builder.get_progress()["status"] == "failed"
        assert cache.is_loaded() is False
        assert builder.is_running() is False


class TestCollectCollectionNames:
    @pytest.mark.asyncio
    async def test_filters_listing_by_document_type_and_system(self, fake_store_factory, config):
        store = fake_store_factory(
            {"world.loot": []},
            extra_infos=[
                CollectionInfo(name="pf2e.items", document_type="Item", system_id="pf2e"),
                CollectionInfo(name="dnd5e.heroes", document_type="Actor", system_id="dnd5e"),
            ],
        )
        builder, _ = _builder(store, config)

        names, listed = await builder.collect_collection_names(["world.custom"])

        assert names[:2] == [ITEMS, "dnd5e.equipment24"]
        assert "world.custom" in names
        assert "world.loot" in names
        assert "pf2e.items" not in names
        assert "dnd5e.heroes" not in names
        assert "pf2e.items" in listed


class TestInstall:
    def test_install_invalidates_derived_state(self, store, config, make_doc, make_snapshot):
        source = MagicMock()
        manager = MagicMock()
        builder, cache = _builder(store, config, source=source, index_manager=manager)
        snapshot = make_snapshot({ITEMS: [make_doc("w1", "Dagger")]})

        builder.install(snapshot)

        assert cache.snapshot is snapshot
        manager.clear.assert_called_once_with()
        source.clear_index_memo.assert_called_once_with()


class TestBuildConcurrency:
    @pytest.fixture
    def tracking_store(self, fake_store_factory, make_doc):
        class TrackingStore(fake_store_factory):
            active = 0
            peak = 0

            async def _hold(self):
                TrackingStore.active += 1
                TrackingStore.peak = max(TrackingStore.peak, TrackingStore.active)
                try:
                    await asyncio.sleep(0.005)
                finally:
                    TrackingStore.active -= 1

            async def get_index(self, collection, fields):
                await self._hold()
                return await super().get_index(collection, fields)

            async def get_documents(self, collection):
                await self._hold()
                return await super().get_documents(collection)

        collections = {f"world.pack{i}": [make_doc(f"w{i}", f"Blade {i}")] for i in range(12)}
        return TrackingStore(collections)

    @pytest.mark.asyncio
    async def test_default_pool_is_bounded(self, tracking_store, config):
        builder, _ = _builder(tracking_store, config)

        result = await builder.rebuild_cache(privileged=True)

        assert len(result.snapshot.packs) == 12
        assert 1 < type(tracking_store).peak <= config.build_concurrency

    @pytest.mark.asyncio
    async def test_single_worker_is_sequential(self, tracking_store, config):
        builder, _ = _builder(tracking_store, config)

        result = await builder.rebuild_cache(privileged=True, concurrency=1)

        assert len(result.snapshot.packs) == 12
        assert type(tracking_store).peak == 1
