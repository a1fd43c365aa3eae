from fastapi import APIRouter

from keyword_engine.api.v1.apps import router as apps_router
from keyword_engine.api.v1.discovery import router as discovery_router
from keyword_engine.api.v1.keywords import router as keywords_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(discovery_router)
api_v1_router.include_router(keywords_router)
api_v1_router.include_router(apps_router)
