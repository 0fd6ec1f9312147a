"""Tests for budget tiers and budget-constrained picking."""

import random

import pytest

from npcforge.data.budget import (
    BudgetTier,
    budget_range,
    is_allowed_item,
    is_within_budget,
    normalize_budget,
    percentile_slice,
    pick_by_budget,
)
from npcforge.data.models import IndexEntry


def _price(item):
    return item[1]


class TestBudgetRange:
    def test_tier_ranges(self):
        assert (budget_range("poor").min, budget_range("poor").max) == (0, 100)
        assert (budget_range("normal").min, budget_range("normal").max) == (10, 2000)
        assert (budget_range("well").min, budget_range("well").max) == (50, 5000)
        assert (budget_range("elite").min, budget_range("elite").max) == (200, 20000)

    def test_elite_magic_range_is_wider(self):
        assert budget_range(BudgetTier.ELITE, allow_magic=True).max == 200000
        assert budget_range(BudgetTier.NORMAL, allow_magic=True).max == 2000

    def test_normalize_budget(self):
        assert normalize_budget("ELITE") is BudgetTier.ELITE
        assert normalize_budget("bogus") is BudgetTier.NORMAL
        assert normalize_budget(None) is BudgetTier.NORMAL

    def test_unpriced_items_are_within_budget(self):
        assert is_within_budget(None, "poor") is True
        assert is_within_budget(150, "poor") is False


class TestPercentileSlice:
    @pytest.mark.parametrize(
        "tier,expected",
        [("poor", (0, 3)), ("normal", (3, 7)), ("well", (6, 9)), ("elite", (8, 10))],
    )
    def test_ten_items(self, tier, expected):
        assert percentile_slice(10, tier) == expected

    @pytest.mark.parametrize(
        "size,tier,expected",
        [
            (1, "poor", (0, 1)),
            (1, "elite", (0, 1)),
            (2, "poor", (0, 1)),
            (2, "elite", (1, 2)),
            (3, "poor", (0, 1)),
            (3, "normal", (0, 3)),
            (3, "well", (1, 3)),
            (3, "elite", (2, 3)),
        ],
    )
    def test_small_pools_never_empty(self, size, tier, expected):
        assert percentile_slice(size, tier) == expected


class TestPickByBudget:
    def test_empty(self):
        assert pick_by_budget([], "normal", False, _price) is None

    def test_poor_band_uses_lowest_three_ranks(self):
        pool = [(f"item{i}", price) for i, price in enumerate(range(10, 101, 10))]
        rng = random.Random(1)

        picked = {pick_by_budget(pool, "poor", False, _price, rng=rng)[1] for _ in range(1000)}

        assert picked == {10, 20, 30}

    def test_in_range_candidates_win(self):
        pool = [("cheap", 5), ("fair", 500), ("pricey", 50000)]
        rng = random.Random(2)
        for _ in range(200):
            assert pick_by_budget(pool, "normal", False, _price, rng=rng)[0] == "fair"

    def test_nearest_price_fallback(self):
        pool = [("a", 500), ("b", 150), ("c", 3000)]
        rng = random.Random(3)
        for _ in range(100):
            assert pick_by_budget(pool, "poor", False, _price, rng=rng)[0] == "b"

    def test_nearest_price_ties_are_kept(self):
        pool = [("a", 150), ("b", 150), ("c", 3000)]
        rng = random.Random(4)
        picked = {pick_by_budget(pool, "poor", False, _price, rng=rng)[0] for _ in range(200)}
        assert picked <= {"a", "b"}

    def test_unpriced_pool_picks_any(self):
        pool = [("a", None), ("b", "n/a")]
        rng = random.Random(5)
        picked = {pick_by_budget(pool, "elite", False, _price, rng=rng)[0] for _ in range(100)}
        assert picked == {"a", "b"}

    def test_unpriced_candidates_are_dropped_when_others_are_priced(self):
        pool = [("a", None), ("b", 50)]
        assert pick_by_budget(pool, "poor", False, _price, rng=random.Random(6))[0] == "b"

    def test_gear_scenario(self):
        pool = [("Dagger", 200), ("Longsword", 1000), ("Plate Armor", 15000)]
        rng = random.Random(7)

        normal = {pick_by_budget(pool, "normal", False, _price, rng=rng)[0] for _ in range(300)}
        elite = {pick_by_budget(pool, "elite", False, _price, rng=rng)[0] for _ in range(300)}

        assert normal == {"Dagger", "Longsword"}
        assert elite == {"Plate Armor"}


class TestIsAllowedItem:
    def _entry(self, rarity="", properties=None):
        return IndexEntry.from_raw(
            {"_id": "x", "name": "X", "type": "equipment", "system": {"rarity": rarity, "properties": properties or []}},
            "pack",
        )

    def test_artifacts_never_allowed(self):
        assert is_allowed_item(self._entry("artifact"), allow_magic=True) is False

    def test_magic_requires_permission(self):
        assert is_allowed_item(self._entry("rare"), allow_magic=False) is False
        assert is_allowed_item(self._entry(properties=["mgc"]), allow_magic=False) is False
        assert is_allowed_item(self._entry("rare"), allow_magic=True) is True

    def test_mundane_items_allowed(self):
        assert is_allowed_item(self._entry(""), allow_magic=False) is True
        assert is_allowed_item(self._entry("none"), allow_magic=False) is True
