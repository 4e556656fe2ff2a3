"""Master API router — includes all sub-routers."""

from fastapi import APIRouter

from .routes.action_items import router as action_items_router
from .routes.auth import router as auth_router
from .routes.incidents import router as incidents_router
from .routes.tags import router as tags_router
from .routes.templates import router as templates_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(incidents_router)
api_router.include_router(tags_router)
api_router.include_router(action_items_router)
api_router.include_router(templates_router)
