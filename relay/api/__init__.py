"""API routes and endpoints."""

from fastapi import APIRouter

from relay.api import health, home

api_router = APIRouter()

api_router.include_router(home.router, tags=["relay"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
