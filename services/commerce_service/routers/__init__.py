"""Commerce service routers package."""

from services.commerce_service.routers.cart import router as cart_router
from services.commerce_service.routers.catalog import router as catalog_router
from services.commerce_service.routers.checkout import router as checkout_router
from services.commerce_service.routers.vendor_catalog import (
    router as vendor_catalog_router,
)
from services.commerce_service.routers.vendor_commerce import (
    router as vendor_commerce_router,
)

__all__ = [
    "cart_router",
    "catalog_router",
    "checkout_router",
    "vendor_catalog_router",
    "vendor_commerce_router",
]
