"""Tests for the lookup index manager."""

import pytest

from npcforge.data.collection_cache import CollectionCache
from npcforge.data.lookup_index import LookupIndexManager, make_index_key
from npcforge.data.text import SearchTokenizer


@pytest.fixture
def snapshot(make_doc, make_snapshot):
    return make_snapshot({
        "dnd5e.items": [
            make_doc("w1", "Dagger"),
            make_doc("w2", "Longsword"),
            make_doc("c1", "Arrows (20)", "consumable"),
            make_doc("l1", "Silk Rope", "loot"),
        ],
    })


def _manager(snapshot, max_keys=8):
    cache = CollectionCache(snapshot, tokenizer=SearchTokenizer(max_entries=100))
    return cache, LookupIndexManager(cache, max_keys=max_keys)


class TestLookupIndexManager:
    def test_index_key_is_sorted_and_requires_types(self):
        assert make_index_key(["b", "a"], ["Weapon", "loot"]) == (("a", "b"), ("loot", "weapon"))
        with pytest.raises(ValueError):
            make_index_key(["a"], [])

    def test_get_index_rejects_empty_types(self, snapshot):
        _, manager = _manager(snapshot)
        with pytest.raises(ValueError):
            manager.get_index(["dnd5e.items"], [" "])

    def test_index_filters_types(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["weapon"])
        assert sorted(doc.name for doc in index.docs) == ["Dagger", "Longsword"]

    def test_repeated_calls_reuse_index(self, snapshot):
        _, manager = _manager(snapshot)
        first = manager.get_index(["dnd5e.items"], ["weapon"])
        second = manager.get_index(["dnd5e.items"], ["weapon"])

        assert first is second
        assert manager.build_count == 1

    def test_snapshot_identity_change_rebuilds(self, snapshot, make_doc, make_snapshot):
        cache, manager = _manager(snapshot)
        first = manager.get_index(["dnd5e.items"], ["weapon"])

        cache.set_snapshot(make_snapshot({"dnd5e.items": [make_doc("w1", "Dagger")]}))
        second = manager.get_index(["dnd5e.items"], ["weapon"])

        assert second is not first
        assert manager.build_count == 2
        assert [doc.name for doc in second.docs] == ["Dagger"]

    def test_rebuild_from_same_snapshot_is_identical(self, snapshot):
        _, manager = _manager(snapshot)
        first = manager.get_index(["dnd5e.items"], ["weapon", "consumable", "loot"])
        manager.clear()
        second = manager.get_index(["dnd5e.items"], ["weapon", "consumable", "loot"])

        assert second is not first
        assert {k: [d.id for d in v] for k, v in first.token_to_docs.items()} == {
            k: [d.id for d in v] for k, v in second.token_to_docs.items()
        }
        assert {k: [d.id for d in v] for k, v in first.word_to_docs.items()} == {
            k: [d.id for d in v] for k, v in second.word_to_docs.items()
        }

    def test_documents_are_indexed_once_per_token(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["consumable"])
        assert [doc.id for doc in index.word_to_docs["arrows"]] == ["c1"]

    def test_key_table_overflow_clears_everything(self, snapshot):
        _, manager = _manager(snapshot, max_keys=1)
        manager.get_index(["dnd5e.items"], ["weapon"])
        manager.get_index(["dnd5e.items"], ["loot"])
        manager.get_index(["dnd5e.items"], ["weapon"])

        assert manager.overflow_clears == 2
        assert manager.build_count == 3


class TestCollectCandidates:
    def test_alias_expansion_hits_word_map(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["consumable"])

        docs = manager.collect_candidates(index, ["Стрелы"])

        assert [doc.name for doc in docs] == ["Arrows (20)"]

    def test_token_hit(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["weapon"])
        assert [doc.id for doc in manager.collect_candidates(index, ["Кинжал"])] == ["w1"]

    def test_union_without_duplicates(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["weapon"])
        docs = manager.collect_candidates(index, ["dagger", "Dagger", "longsword"])
        assert [doc.id for doc in docs] == ["w1", "w2"]

    def test_fallback_to_all_only_when_requested(self, snapshot):
        _, manager = _manager(snapshot)
        index = manager.get_index(["dnd5e.items"], ["weapon"])

        assert manager.collect_candidates(index, ["halberd"]) == []
        assert len(manager.collect_candidates(index, ["halberd"], fallback_to_all=True)) == 2
