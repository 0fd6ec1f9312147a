"""HTTP application entrypoint (composition-only)."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from npcforge import __version__
from npcforge.bootstrap import get_container
from npcforge.web.routers import cache_router, items_router, system_router

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

container = get_container()

_cors_origins_raw = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:30000")
_cors_origins = [o.strip() for o in _cors_origins_raw.split(",") if o.strip()]

app = FastAPI(title="NPC Forge", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(items_router)
app.include_router(cache_router)

__all__ = ["app"]
