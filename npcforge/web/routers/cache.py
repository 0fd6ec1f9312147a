"""Compendium cache management endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field

from npcforge.bootstrap import get_container
from npcforge.data.cache_builder import PrivilegeError, RebuildInProgressError

logger = logging.getLogger(__name__)

router = APIRouter()

PRIVILEGED_ROLES = frozenset({"gm"})


class CacheRebuildRequest(BaseModel):
    collections: list[str] = Field(default_factory=list, description="Extra collections to include")
    concurrency: int | None = Field(default=None, ge=1, le=16)


@router.get("/cache/status")
async def get_cache_status() -> dict[str, Any]:
    container = get_container()
    status = container.cache.status()
    status["rebuild"] = container.builder.get_progress()
    return status


@router.post("/cache/rebuild")
async def rebuild_cache(
    request: CacheRebuildRequest | None = None,
    x_user_role: str | None = Header(default=None),
) -> dict[str, Any]:
    req = request or CacheRebuildRequest()
    privileged = (x_user_role or "").strip().lower() in PRIVILEGED_ROLES
    try:
        result = await get_container().builder.rebuild_cache(
            req.collections,
            privileged=privileged,
            concurrency=req.concurrency,
        )
    except PrivilegeError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except RebuildInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Error in rebuild_cache")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return result.to_dict()


@router.get("/cache/rebuild/progress")
async def get_rebuild_progress() -> dict[str, Any]:
    return get_container().builder.get_progress()
