"""Centralized v1 API router — all module routers are included here."""

from fastapi import APIRouter

from src.modules.archive.router import router as archive_router
from src.modules.delivery.router import router as delivery_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(delivery_router)
v1_router.include_router(archive_router)
