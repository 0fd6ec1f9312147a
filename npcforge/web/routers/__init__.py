from .cache import router as cache_router
from .items import router as items_router
from .system import router as system_router

__all__ = [
    "cache_router",
    "items_router",
    "system_router",
]
