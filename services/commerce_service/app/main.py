"""FastAPI application for the Commerce Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.commerce_service.errors import CommerceError
from services.commerce_service.routers import (
    cart_router,
    catalog_router,
    checkout_router,
    vendor_catalog_router,
    vendor_commerce_router,
)
from slowapi.errors import RateLimitExceeded


def create_app() -> FastAPI:
    """Create and configure the Commerce Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Commerce Service",
        version="0.1.0",
        description=(
            "Multi-vendor marketplace core - variant pricing, addons, carts, "
            "coupons, checkout and inventory."
        ),
    )

    add_observability_middleware(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    add_exception_handlers(app, CommerceError)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "commerce"}

    # Storefront routes (catalog, cart, checkout, webhooks, orders)
    app.include_router(catalog_router, prefix="/store")
    app.include_router(cart_router, prefix="/store")
    app.include_router(checkout_router, prefix="/store")

    # Vendor dashboard routes (catalog, variants, addons, coupons, inventory, orders)
    app.include_router(vendor_catalog_router, prefix="/vendor")
    app.include_router(vendor_commerce_router, prefix="/vendor")

    return app


app = create_app()
