"""Price parsing at the ingestion boundary.

Host documents carry prices in several shapes:

- ``{"value": 15, "denomination": "gp"}`` (``unit`` is accepted as an alias)
- ``{"value": "15 gp"}`` or a bare ``"15 gp"`` string
- a split breakdown such as ``{"gp": 2, "sp": 5}``
- a bare number, already expressed in copper

Everything downstream only sees an integer copper amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import re
from typing import Any

COPPER_PER_UNIT = {"cp": 1, "sp": 10, "ep": 50, "gp": 100, "pp": 1000}
DEFAULT_DENOMINATION = "gp"

_PRICE_STRING_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)\s*(pp|gp|ep|sp|cp)?")


@dataclass(frozen=True)
class PriceAmount:
    value: float
    denomination: str = DEFAULT_DENOMINATION

    def to_copper(self) -> int:
        return round(self.value * COPPER_PER_UNIT.get(self.denomination, COPPER_PER_UNIT[DEFAULT_DENOMINATION]))


@dataclass(frozen=True)
class PriceBreakdown:
    amounts: dict[str, float] = field(default_factory=dict)

    def to_copper(self) -> int:
        return round(sum(value * COPPER_PER_UNIT[denom] for denom, value in self.amounts.items()))


@dataclass(frozen=True)
class CopperPrice:
    copper: int

    def to_copper(self) -> int:
        return self.copper


Price = PriceAmount | PriceBreakdown | CopperPrice


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def parse_price_string(text: str) -> PriceAmount | None:
    """Parse strings like ``"5 gp"`` or ``"2.5sp"``; a missing unit means gold."""
    match = _PRICE_STRING_RE.search(str(text).strip().lower())
    if not match:
        return None
    return PriceAmount(value=float(match.group(1)), denomination=match.group(2) or DEFAULT_DENOMINATION)


def parse_price(raw: Any) -> Price | None:
    if raw is None:
        return None

    number = _finite_number(raw)
    if number is not None:
        return CopperPrice(copper=round(number))

    if isinstance(raw, str):
        return parse_price_string(raw)

    if not isinstance(raw, dict):
        return None

    denomination = str(raw.get("denomination") or raw.get("unit") or "").strip().lower()
    if "value" in raw:
        value = raw.get("value")
        number = _finite_number(value)
        if number is not None:
            return PriceAmount(value=number, denomination=denomination or DEFAULT_DENOMINATION)
        if isinstance(value, str):
            parsed = parse_price_string(value)
            if parsed and denomination and not re.search(r"(pp|gp|ep|sp|cp)", value.lower()):
                return PriceAmount(value=parsed.value, denomination=denomination)
            return parsed
        return None

    amounts: dict[str, float] = {}
    for denom in COPPER_PER_UNIT:
        amount = _finite_number(raw.get(denom))
        if amount is not None:
            amounts[denom] = amount
    if amounts:
        return PriceBreakdown(amounts=amounts)
    return None


def price_to_copper(raw: Any) -> int | None:
    price = parse_price(raw)
    return price.to_copper() if price is not None else None


def copper_to_gold(copper: int) -> int:
    return max(1, round(copper / 100))
