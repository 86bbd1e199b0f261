"""Enum definitions for commerce service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class StorePlan(str, enum.Enum):
    TRIAL = "trial"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Platform fee charged on each order total, by subscription plan
PLAN_PLATFORM_FEE_PERCENT = {
    StorePlan.TRIAL: 7,
    StorePlan.STARTER: 5,
    StorePlan.PRO: 3,
    StorePlan.ENTERPRISE: 2,
}


class ProductStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    ARCHIVED = "archived"


class VariantAxis(str, enum.Enum):
    """Option axes. Values appear verbatim in combination keys."""

    SIZE = "SIZE"
    COLOR = "COLOR"
    MATERIAL = "MATERIAL"
    STYLE = "STYLE"
    FINISH = "FINISH"
    FORMAT = "FORMAT"
    CUSTOM = "CUSTOM"


class AddonFieldType(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DATE = "date"
    COLOR = "color"
    FILE = "file"
    IMAGE_BUTTONS = "image_buttons"


CHOICE_FIELD_TYPES = frozenset(
    {
        AddonFieldType.SELECT,
        AddonFieldType.RADIO,
        AddonFieldType.CHECKBOX,
        AddonFieldType.IMAGE_BUTTONS,
    }
)


class AddonPriceType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"  # Reserved; never evaluated


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"


class CartStatus(str, enum.Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    EXPIRED = "expired"
    ABANDONED = "abandoned"


class OrderStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    AWAITING_CASH_COLLECTION = "awaiting_cash_collection"
    PAYMENT_FAILED = "payment_failed"
    STOCK_CONFLICT = "stock_conflict"
    COUPON_CONFLICT = "coupon_conflict"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Orders in these states hold decremented stock
CONFIRMED_ORDER_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.AWAITING_CASH_COLLECTION,
        OrderStatus.FULFILLED,
    }
)


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    SQUARE = "square"
    CASH = "cash"


class InventoryMovementType(str, enum.Enum):
    SALE = "sale"
    RELEASE = "release"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"


class AuditEntityType(str, enum.Enum):
    PRODUCT = "product"
    COMBINATION = "combination"
    INVENTORY = "inventory"
    COUPON = "coupon"
    ORDER = "order"
