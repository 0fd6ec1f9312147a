"""Application layer services."""

from .item_requests import (
    apply_reference_overrides,
    build_item_request_groups,
    is_armor_item,
    is_shield_item,
    normalize_ai_item_groups,
    normalize_armor_items,
    normalize_item_references,
    split_flat_item_names,
)
from .resolution_service import MatchDetail, ResolutionPipeline, ResolutionReport

__all__ = [
    "apply_reference_overrides",
    "build_item_request_groups",
    "is_armor_item",
    "is_shield_item",
    "normalize_ai_item_groups",
    "normalize_armor_items",
    "normalize_item_references",
    "split_flat_item_names",
    "MatchDetail",
    "ResolutionPipeline",
    "ResolutionReport",
]
