"""Budget tiers and budget-constrained candidate selection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
import random
from typing import Any, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BudgetTier(StrEnum):
    POOR = "poor"
    NORMAL = "normal"
    WELL = "well"
    ELITE = "elite"


@dataclass(frozen=True)
class PriceRange:
    min: int
    max: int

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max

    def distance(self, price: float) -> float:
        if price < self.min:
            return self.min - price
        if price > self.max:
            return price - self.max
        return 0.0


# Copper amounts.
BUDGET_RANGES: dict[BudgetTier, PriceRange] = {
    BudgetTier.POOR: PriceRange(0, 100),
    BudgetTier.NORMAL: PriceRange(10, 2000),
    BudgetTier.WELL: PriceRange(50, 5000),
    BudgetTier.ELITE: PriceRange(200, 20000),
}
ELITE_MAGIC_RANGE = PriceRange(200, 200000)

# Percent of the price-sorted pool, [from, to).
PERCENTILE_BANDS: dict[BudgetTier, tuple[int, int]] = {
    BudgetTier.POOR: (0, 30),
    BudgetTier.NORMAL: (30, 70),
    BudgetTier.WELL: (60, 90),
    BudgetTier.ELITE: (80, 100),
}


def normalize_budget(value: Any) -> BudgetTier:
    """Map free-form input to a tier; unknown values fall back to ``normal``."""
    if isinstance(value, BudgetTier):
        return value
    try:
        return BudgetTier(str(value or "").strip().lower())
    except ValueError:
        return BudgetTier.NORMAL


def budget_range(tier: BudgetTier | str, allow_magic: bool = False) -> PriceRange:
    tier = normalize_budget(tier)
    if tier is BudgetTier.ELITE and allow_magic:
        return ELITE_MAGIC_RANGE
    return BUDGET_RANGES[tier]


def is_within_budget(price_cp: int | None, tier: BudgetTier | str, allow_magic: bool = False) -> bool:
    """Unpriced items never count against a budget."""
    if price_cp is None:
        return True
    return budget_range(tier, allow_magic).contains(price_cp)


def percentile_slice(size: int, tier: BudgetTier | str) -> tuple[int, int]:
    """Index window ``[start, end)`` of the tier's band over a sorted pool.

    Integer arithmetic keeps the bounds exact: the start rounds down, the end
    rounds up, and the window always holds at least one index.
    """
    if size <= 0:
        return 0, 0
    from_pct, to_pct = PERCENTILE_BANDS[normalize_budget(tier)]
    start = min(size * from_pct // 100, size - 1)
    end = min(-(-size * to_pct // 100), size)
    if end <= start:
        end = start + 1
    return start, end


def pick_by_budget(
    candidates: Sequence[T],
    tier: BudgetTier | str,
    allow_magic: bool,
    price_fn: Callable[[T], Any],
    rng: random.Random | None = None,
) -> T | None:
    """Pick a tier-appropriate candidate.

    Candidates priced inside the tier range are preferred; otherwise the ones
    closest to the range win. The survivors are sorted by price and one is
    drawn at random from the tier's percentile band. When nothing is priced
    the pick is uniform over all candidates.
    """
    if not candidates:
        return None
    rng = rng or random

    priced: list[tuple[T, float]] = []
    for candidate in candidates:
        price = price_fn(candidate)
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            continue
        if price != price:
            continue
        priced.append((candidate, float(price)))

    if not priced:
        return rng.choice(list(candidates))

    price_range = budget_range(tier, allow_magic)
    pool = [pair for pair in priced if price_range.contains(pair[1])]
    if not pool:
        nearest = min(price_range.distance(price) for _, price in priced)
        pool = [pair for pair in priced if price_range.distance(pair[1]) == nearest]

    pool.sort(key=lambda pair: pair[1])
    start, end = percentile_slice(len(pool), tier)
    return rng.choice(pool[start:end])[0]


def is_allowed_item(item: Any, allow_magic: bool = False) -> bool:
    """Artifacts are never allowed; magic items only when ``allow_magic``."""
    rarity = str(getattr(item, "rarity", "") or "").lower()
    if rarity == "artifact":
        return False
    if allow_magic:
        return True
    if "mgc" in getattr(item, "properties", frozenset()):
        return False
    return not rarity or rarity == "none"
