from fastapi import APIRouter

from src.api.routes import dispatch, health, tasks

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(tasks.router)
api_router.include_router(dispatch.router)
