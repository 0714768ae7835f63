"""FastAPI routers for the alumni network."""

from __future__ import annotations

from fastapi import APIRouter

from alumnet.network.api import audience, events, groups, posts, topics

router = APIRouter(prefix="/api/network/v1")

router.include_router(groups.router)
router.include_router(topics.router)
router.include_router(posts.router)
router.include_router(events.router)
router.include_router(audience.router)

__all__ = ["router"]
