from fastapi import APIRouter

from billing_engine.web.routers import admin, users, webhooks


def setup_routers() -> APIRouter:
    router = APIRouter()
    router.include_router(webhooks.router)
    router.include_router(users.router)
    router.include_router(admin.router)
    return router


__all__ = ["setup_routers"]
