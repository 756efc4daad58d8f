"""
Main API router for v1 endpoints.
"""

from fastapi import APIRouter

from trendsync.api.v1.endpoints import sync, trends

api_router = APIRouter()

api_router.include_router(trends.router, prefix="/trends", tags=["trends"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
