from fastapi import APIRouter

from proclaim.api.routes import claims, health, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(claims.router, tags=["claims"])
