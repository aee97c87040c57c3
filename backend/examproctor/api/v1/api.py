from fastapi import APIRouter

from .endpoints import sessions, admin, health

api_router = APIRouter()

api_router.include_router(sessions.router, prefix="/session", tags=["session"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
