"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! create_app() mounts it under /api,
# so the prefixes below become /api/sync/full, /api/library/scenes and so on. The tags group
# endpoints in the OpenAPI docs. library.py has a catch-all "/{kind}" route, which is why it
# lives under its own prefix instead of sharing the root with anything else.

from fastapi import APIRouter

from peekstash.api.routers import exclusions, instances, library, stats, sync, users

api_router = APIRouter()

api_router.include_router(instances.router, prefix="/instances", tags=["Instances"])
api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(sync.router, prefix="/sync", tags=["Sync"])
api_router.include_router(library.router, prefix="/library", tags=["Library"])
api_router.include_router(exclusions.router, prefix="/exclusions", tags=["Exclusions"])
api_router.include_router(stats.router, prefix="/stats", tags=["Stats"])

__all__ = [
    "api_router",
    "exclusions",
    "instances",
    "library",
    "stats",
    "sync",
    "users",
]
