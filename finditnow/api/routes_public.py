"""
Public API Routes

Unauthenticated reads that the landing page needs even while the site is
in maintenance.
"""

from fastapi import APIRouter, Depends

from ..web.deps import get_services
from ..web.shared_store import Services


router = APIRouter(tags=["Public"])


@router.get("/api/maintenance")
def maintenance_status(services: Services = Depends(get_services)):
    config = services.maintenance.get()
    return {"is_enabled": config.is_enabled, "message": config.message}
