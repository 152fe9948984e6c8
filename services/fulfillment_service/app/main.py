"""FastAPI application for the Fulfillment Service."""

from fastapi import FastAPI
from libs.common.middleware import add_observability_middleware
from services.fulfillment_service.routers import (
    orders_router,
    shipping_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Fulfillment Service FastAPI app."""
    app = FastAPI(
        title="Fulfillment Service",
        version="0.1.0",
        description="Payment webhooks, stock reservation and carrier shipments.",
    )
    add_observability_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "fulfillment"}

    app.include_router(webhooks_router)
    app.include_router(orders_router)
    app.include_router(shipping_router)

    return app


app = create_app()
