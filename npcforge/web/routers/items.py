"""Item resolution endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from npcforge.application.item_requests import build_item_request_groups, normalize_ai_item_groups
from npcforge.bootstrap import get_container
from npcforge.data.matching import ItemReference, ResolutionGroup

logger = logging.getLogger(__name__)

router = APIRouter()


class ResolveItemRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200, description="Requested display name")
    lookup: str = Field(default="", max_length=200, description="Canonical/English name hint")
    allowed_types: list[str] = Field(min_length=1, description="Document types that may match")
    collections: list[str] = Field(default_factory=list, description="Collections in priority order")
    kind: str | None = Field(default=None, description="Collection kind used when no collections are given")
    budget: str = "normal"
    allow_magic: bool = True
    equip: bool = False
    ensure_feature_activities: bool = False


class ResolveGroupsRequest(BaseModel):
    items: dict[str, Any] = Field(default_factory=dict, description="AI item payload (weapons, armor, ...)")
    budget: str = "normal"
    concurrency: int | None = Field(default=None, ge=1, le=16)
    allow_magic: bool = True
    include_details: bool = True


@router.post("/items/resolve")
async def resolve_item(request: ResolveItemRequest) -> dict[str, Any]:
    container = get_container()
    collections = request.collections
    if not collections and request.kind:
        collections = container.source.packs_for_kind(request.kind)

    try:
        group = ResolutionGroup(
            key="request",
            references=[],
            packs=collections,
            allowed_types=frozenset(request.allowed_types),
            equip=request.equip,
            ensure_feature_activities=request.ensure_feature_activities,
            allow_magic=request.allow_magic,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    reference = ItemReference(name=request.name.strip(), lookup=request.lookup.strip())
    try:
        outcome = await container.engine.resolve(reference, group, request.budget)
    except Exception as exc:
        logger.exception("Error in resolve_item")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    if outcome.result is None:
        return {"found": False, "strategy": str(outcome.strategy) if outcome.strategy else None}
    return {
        "found": True,
        "item": outcome.result.item,
        "meta": outcome.result.meta.to_dict(),
    }


@router.post("/items/resolve-groups")
async def resolve_item_groups(request: ResolveGroupsRequest) -> dict[str, Any]:
    container = get_container()
    ai_items = normalize_ai_item_groups(request.items)
    groups = build_item_request_groups(ai_items, container.source, allow_magic=request.allow_magic)
    try:
        report = await container.pipeline.resolve_request_groups(
            groups,
            request.budget,
            request.concurrency,
            collect_details=request.include_details,
        )
    except Exception as exc:
        logger.exception("Error in resolve_item_groups")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return report.to_dict()
