"""Impact service routers."""

from services.impact_service.routers.admin import router as admin_router
from services.impact_service.routers.internal import router as internal_router
from services.impact_service.routers.member import router as impact_router

__all__ = [
    "admin_router",
    "internal_router",
    "impact_router",
]
