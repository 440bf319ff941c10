"""API routes for MSP Reporting."""

from fastapi import APIRouter

from .admin import router as admin_router
from .auth import router as auth_router
from .monitoring import router as monitoring_router
from .profile import router as profile_router
from .reporting import router as reporting_router
from .sync import router as sync_router

# Main API router
api_router = APIRouter()

# Public config and password login
api_router.include_router(auth_router)

# Tenant-scoped reporting (HaloPSA data synced into the local store)
api_router.include_router(reporting_router)
api_router.include_router(sync_router)

# Live NinjaOne / 20i inventory
api_router.include_router(monitoring_router)

api_router.include_router(profile_router)
api_router.include_router(admin_router)

__all__ = ["api_router"]
