from fastapi import APIRouter

from lexplan.api import routes


def setup_routers() -> APIRouter:
    router = APIRouter(prefix="/api")
    router.include_router(routes.router)
    return router


__all__ = ["setup_routers"]
