from fastapi import APIRouter

from app.api.routes import health, ops

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
