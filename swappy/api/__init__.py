"""HTTP routing for the Swappy media API."""

from fastapi import APIRouter

from . import routes_assets, routes_audio, routes_system, routes_videos


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(routes_system.router)
    router.include_router(routes_videos.router)
    router.include_router(routes_audio.router)
    router.include_router(routes_assets.router)
    return router


__all__ = ["get_api_router"]
