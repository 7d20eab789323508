from fastapi import APIRouter

from cardroom.api.routes.health import router as health_router
from cardroom.api.routes.rooms import router as rooms_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(rooms_router, prefix="/rooms", tags=["rooms"])
