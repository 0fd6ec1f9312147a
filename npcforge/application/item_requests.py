"""Ingestion of AI-supplied item lists into resolution requests."""

from __future__ import annotations

import math
import re
from typing import Any, Iterable

from npcforge.data.compendium_source import CompendiumSource, unique_names
from npcforge.data.matching import ItemReference, ResolutionGroup
from npcforge.data.pricing import copper_to_gold, price_to_copper
from npcforge.data.text import collapse_whitespace

GROUP_LIMITS: dict[str, int] = {
    "weapons": 6,
    "armor": 4,
    "equipment": 12,
    "consumables": 8,
    "loot": 10,
    "spells": 14,
    "features": 14,
}
GROUP_KEYS = tuple(GROUP_LIMITS)

NAME_KEYS = ("name", "label", "item", "value")
LOOKUP_KEYS = ("lookup", "canonical", "english", "en")
QUANTITY_KEYS = ("quantity", "qty", "count")
MAX_QUANTITY = 9999

_SPLIT_RE = re.compile(r"[,;\n]+")

ARMOR_TYPE_VALUES = frozenset({"light", "medium", "heavy", "shield", "armor"})
_ARMOR_NAME_RE = re.compile(
    r"armor|mail|plate|chain|leather|scale|breastplate|shield|доспех|кольчуг|латы|панцир|щит",
    re.IGNORECASE,
)
_SHIELD_NAME_RE = re.compile(r"shield|щит", re.IGNORECASE)

# Flat item names are routed by the first pattern that matches.
FLAT_ITEM_ROUTES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("weapons", re.compile(r"sword|axe|mace|hammer|bow|crossbow|dagger|spear|halberd|staff|rapier|whip|javelin|flail")),
    ("armor", re.compile(r"armor|mail|plate|shield|helm|gauntlet|breastplate|leather|chain")),
    ("consumables", re.compile(r"potion|elixir|scroll|ammo|arrows|bolts|kit|healer|ration")),
    ("loot", re.compile(r"gem|coin|ring|necklace|trinket|relic|idol|token")),
)


def _first_text(raw: dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip():
            return str(value)
    return ""


def _quantity(raw: dict[str, Any]) -> int | None:
    for key in QUANTITY_KEYS:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return max(1, min(MAX_QUANTITY, round(number)))
    return None


def requested_price_gp(raw: dict[str, Any]) -> float | None:
    """Gold price requested for an item: ``priceGp``/``gp``, a bare ``price`` or a price object."""
    for key in ("priceGp", "gp"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0:
            return float(value)

    price = raw.get("price")
    if isinstance(price, (int, float)) and not isinstance(price, bool):
        return float(price) if math.isfinite(price) and price > 0 else None
    if isinstance(price, dict):
        copper = price_to_copper(price)
        if copper is not None and copper > 0:
            return copper / 100
    return None


def _reference_from_raw(raw: Any, max_length: int) -> ItemReference | None:
    if isinstance(raw, dict):
        name = collapse_whitespace(_first_text(raw, NAME_KEYS), max_length)
        lookup = collapse_whitespace(_first_text(raw, LOOKUP_KEYS), max_length)
        if not name:
            name = lookup
        if not name:
            return None
        return ItemReference(
            name=name,
            lookup="" if lookup.lower() == name.lower() else lookup,
            quantity=_quantity(raw),
            price_gp=requested_price_gp(raw),
        )
    if isinstance(raw, ItemReference):
        return raw
    name = collapse_whitespace(raw, max_length) if isinstance(raw, (str, int, float)) else ""
    return ItemReference(name=name) if name else None


def _raw_items(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in _SPLIT_RE.split(value) if part.strip()]
    if isinstance(value, dict):
        if any(key in value for key in NAME_KEYS + LOOKUP_KEYS):
            return [value]
        out: list[Any] = []
        for nested in value.values():
            out.extend(_raw_items(nested))
        return out
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def dedupe_references(references: Iterable[ItemReference], max_items: int) -> list[ItemReference]:
    out: list[ItemReference] = []
    seen: set[str] = set()
    for ref in references:
        key = ref.name.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(ref)
        if len(out) >= max_items:
            break
    return out


def normalize_item_references(value: Any, max_items: int = 6, max_length: int = 80) -> list[ItemReference]:
    refs = (_reference_from_raw(raw, max_length) for raw in _raw_items(value))
    return dedupe_references((ref for ref in refs if ref is not None), max_items)


def split_flat_item_names(references: Iterable[ItemReference]) -> dict[str, list[ItemReference]]:
    routed: dict[str, list[ItemReference]] = {key: [] for key in ("weapons", "armor", "equipment", "consumables", "loot")}
    for ref in references:
        haystack = f"{ref.name} {ref.lookup}".lower()
        for key, pattern in FLAT_ITEM_ROUTES:
            if pattern.search(haystack):
                routed[key].append(ref)
                break
        else:
            routed["equipment"].append(ref)
    return {key: dedupe_references(refs, GROUP_LIMITS[key]) for key, refs in routed.items()}


def normalize_ai_item_groups(raw: Any) -> dict[str, list[ItemReference]]:
    source = raw if isinstance(raw, dict) else {}
    flat = split_flat_item_names(normalize_item_references(source.get("items"), 18, 80))
    actions = normalize_item_references(source.get("actions"), 12, 100)

    groups: dict[str, list[ItemReference]] = {}
    for key in ("weapons", "armor", "equipment", "consumables", "loot"):
        limit = GROUP_LIMITS[key]
        groups[key] = dedupe_references(
            normalize_item_references(source.get(key), limit, 80) + flat[key],
            limit,
        )
    groups["spells"] = normalize_item_references(source.get("spells"), GROUP_LIMITS["spells"], 80)
    groups["features"] = dedupe_references(
        normalize_item_references(source.get("features"), 12, 100) + actions,
        GROUP_LIMITS["features"],
    )
    return groups


def build_item_request_groups(
    ai_items: dict[str, list[ItemReference]],
    source: CompendiumSource,
    *,
    allow_magic: bool = True,
) -> list[ResolutionGroup]:
    weapon_packs = source.packs_for_kind("weapons")
    loot_packs = source.packs_for_kind("loot")
    gear_packs = unique_names(weapon_packs + loot_packs)
    feature_packs = unique_names(source.packs_for_kind("classFeatures") + source.packs_for_kind("features"))

    specs: list[tuple[str, list[str], set[str], dict[str, bool]]] = [
        ("weapons", weapon_packs, {"weapon", "equipment"}, {"equip": True}),
        ("armor", gear_packs, {"equipment"}, {"equip": True}),
        ("equipment", gear_packs, {"equipment", "loot", "consumable"}, {}),
        ("consumables", loot_packs, {"consumable", "loot", "equipment"}, {}),
        ("loot", loot_packs, {"loot", "consumable", "equipment"}, {}),
        ("spells", source.packs_for_kind("spells"), {"spell"}, {}),
        ("features", feature_packs, {"feat"}, {"ensure_feature_activities": True}),
    ]
    return [
        ResolutionGroup(
            key=key,
            references=list(ai_items.get(key) or []),
            packs=packs,
            allowed_types=frozenset(types),
            allow_magic=allow_magic,
            **flags,
        )
        for key, packs, types, flags in specs
    ]


def apply_reference_overrides(item: dict[str, Any], reference: ItemReference) -> dict[str, Any]:
    """Apply the requested quantity and gold price to a resolved item."""
    if reference.quantity is not None and reference.quantity > 0:
        system = item.setdefault("system", {})
        system["quantity"] = min(MAX_QUANTITY, reference.quantity)

    if reference.price_gp is not None and reference.price_gp > 0:
        copper = round(reference.price_gp * 100)
        system = item.setdefault("system", {})
        system["price"] = {"value": copper_to_gold(copper), "denomination": "gp"}
        flags = item.setdefault("flags", {})
        flags.setdefault("npcforge", {})["rolledPriceCp"] = copper
    return item


def _armor_fields(item: dict[str, Any]) -> tuple[str, str, str]:
    system = item.get("system") if isinstance(item.get("system"), dict) else {}
    armor = system.get("armor") if isinstance(system.get("armor"), dict) else {}
    type_info = system.get("type") if isinstance(system.get("type"), dict) else {}
    return (
        str(armor.get("type") or "").lower(),
        str(type_info.get("value") or "").lower(),
        str(item.get("name") or ""),
    )


def is_armor_item(item: dict[str, Any]) -> bool:
    if str(item.get("type") or "").lower() != "equipment":
        return False
    armor_type, type_value, name = _armor_fields(item)
    if armor_type or type_value in ARMOR_TYPE_VALUES:
        return True
    return bool(_ARMOR_NAME_RE.search(name))


def is_shield_item(item: dict[str, Any]) -> bool:
    armor_type, type_value, name = _armor_fields(item)
    return armor_type == "shield" or type_value == "shield" or bool(_SHIELD_NAME_RE.search(name))


def _item_price_cp(item: dict[str, Any]) -> int:
    system = item.get("system") if isinstance(item.get("system"), dict) else {}
    return price_to_copper(system.get("price")) or 0


def normalize_armor_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep at most one body armor and one shield, the most expensive of each.

    Other items keep their order; the kept armor and shield are appended.
    """
    armor: list[dict[str, Any]] = []
    shields: list[dict[str, Any]] = []
    rest: list[dict[str, Any]] = []
    for item in items:
        if not is_armor_item(item):
            rest.append(item)
        elif is_shield_item(item):
            shields.append(item)
        else:
            armor.append(item)

    kept = list(rest)
    for pool in (armor, shields):
        if pool:
            kept.append(max(pool, key=_item_price_cp))
    return kept
