"""API v1 router combining all route modules."""

from fastapi import APIRouter

from shopagent.api.v1 import chat, health

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Chat endpoints
api_router.include_router(
    chat.router,
    prefix="/chat",
    tags=["chat"],
)
