"""Commerce Service models package."""

from services.commerce_service.models.catalog import (
    Category,
    Product,
    ProductAddon,
    Store,
    VariantCombination,
    VariantOption,
)
from services.commerce_service.models.commerce import (
    Cart,
    CartItem,
    Coupon,
    CouponRedemption,
    Order,
    OrderItem,
    ProcessedPaymentEvent,
)
from services.commerce_service.models.enums import (
    CHOICE_FIELD_TYPES,
    CONFIRMED_ORDER_STATUSES,
    PLAN_PLATFORM_FEE_PERCENT,
    AddonFieldType,
    AddonPriceType,
    AuditEntityType,
    CartStatus,
    DiscountType,
    InventoryMovementType,
    OrderStatus,
    PaymentMethod,
    ProductStatus,
    StorePlan,
    VariantAxis,
)
from services.commerce_service.models.inventory import (
    InventoryMovement,
    StoreAuditLog,
)

__all__ = [
    "AddonFieldType",
    "AddonPriceType",
    "AuditEntityType",
    "CHOICE_FIELD_TYPES",
    "CONFIRMED_ORDER_STATUSES",
    "Cart",
    "CartItem",
    "CartStatus",
    "Category",
    "Coupon",
    "CouponRedemption",
    "DiscountType",
    "InventoryMovement",
    "InventoryMovementType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PLAN_PLATFORM_FEE_PERCENT",
    "PaymentMethod",
    "ProcessedPaymentEvent",
    "Product",
    "ProductAddon",
    "ProductStatus",
    "Store",
    "StoreAuditLog",
    "StorePlan",
    "VariantAxis",
    "VariantCombination",
    "VariantOption",
]
