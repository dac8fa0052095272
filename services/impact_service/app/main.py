"""FastAPI application for the Impact Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.impact_service.routers.admin import router as admin_router
from services.impact_service.routers.internal import router as internal_router
from services.impact_service.routers.member import router as impact_router


def create_app() -> FastAPI:
    """Create and configure the Impact Service FastAPI app."""
    app = FastAPI(
        title="Impact Service",
        version="0.1.0",
        description="Donation impact scoring, challenges and reward vouchers.",
    )
    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "impact"}

    # Member-facing routes
    app.include_router(impact_router)

    # Admin routes
    app.include_router(admin_router)

    # Internal service-to-service routes
    app.include_router(internal_router)

    return app


app = create_app()
