"""Master API router mounted at /api/v1."""

from fastapi import APIRouter

from npmsync.api.routes import backfill, health, notifications, packages

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(backfill.router)
api_router.include_router(packages.router)
api_router.include_router(notifications.router)
