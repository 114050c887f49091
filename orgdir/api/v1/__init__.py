"""
API v1 routes.
"""

from fastapi import APIRouter

from orgdir.api.v1 import audit, auth, directory

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(directory.router, prefix="/directory", tags=["Directory"])
router.include_router(audit.router, prefix="/audit", tags=["Audit"])
