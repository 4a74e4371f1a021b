"""API Routes module"""
from fastapi import APIRouter

from .workflows import router as workflows_router
from .cases import router as cases_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(workflows_router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(cases_router, prefix="/cases", tags=["Cases"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])

__all__ = ["api_router"]
