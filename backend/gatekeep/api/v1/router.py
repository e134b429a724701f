"""API v1 router aggregator.

All v1 endpoint routers are included here and mounted at /api/v1.
"""

from fastapi import APIRouter

from gatekeep.api.v1 import admin, auth, providers

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(providers.router, prefix="/providers", tags=["providers"])

# =============================================================================
# Administration
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
