"""Pydantic schemas for commerce service."""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from libs.common.datetime_utils import as_utc
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from services.commerce_service.models import (
    AddonFieldType,
    AddonPriceType,
    CartStatus,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    ProductStatus,
    StorePlan,
    VariantAxis,
)

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,50}$")

# ============================================================================
# STORE & CATEGORY SCHEMAS
# ============================================================================


class StoreCreate(BaseModel):
    slug: str = Field(..., max_length=100, pattern=r"^[a-z0-9-]+$")
    name: str = Field(..., max_length=255)
    plan: StorePlan = StorePlan.TRIAL
    accepts_cash: bool = False
    cash_instructions: Optional[str] = None


class StoreResponse(StoreCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_auth_id: str
    platform_fee_percent: int
    created_at: datetime


class CategoryCreate(BaseModel):
    name: str = Field(..., max_length=100)
    slug: str = Field(..., max_length=100)
    sort_order: int = 0


class CategoryResponse(CategoryCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    store_id: uuid.UUID


# ============================================================================
# PRODUCT SCHEMAS
# ============================================================================


class ProductBase(BaseModel):
    name: str = Field(..., max_length=255)
    slug: str = Field(..., max_length=255)
    category_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    base_price: Decimal = Field(..., ge=0, decimal_places=2)
    compare_at_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    track_inventory: bool = True
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    status: ProductStatus = ProductStatus.DRAFT
    use_multi_variants: bool = True


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    category_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    base_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    compare_at_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    track_inventory: Optional[bool] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    status: Optional[ProductStatus] = None


class ProductResponse(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    store_id: uuid.UUID
    variant_axes: list[VariantAxis] = []
    created_at: datetime
    updated_at: datetime


# ============================================================================
# VARIANT SCHEMAS
# ============================================================================


class VariantOptionInput(BaseModel):
    value: str = Field(..., min_length=1, max_length=100)
    display_name: Optional[str] = Field(None, max_length=100)
    hex_color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    is_active: bool = True

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("value must not be blank")
        if "|" in v or ":" in v:
            raise ValueError("value must not contain '|' or ':'")
        return v


class AxisDefinition(BaseModel):
    values: list[VariantOptionInput] = Field(default_factory=list)


class VariantOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    axis: VariantAxis
    value: str
    display_name: str
    hex_color: Optional[str] = None
    sort_order: int
    is_active: bool


class CombinationUpdate(BaseModel):
    """Bulk-editable fields of one combination. ``clear_price`` drops the override."""

    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    clear_price: bool = False
    compare_at_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    quantity: Optional[int] = Field(None, ge=0)
    available: Optional[bool] = None
    inventory_tracked: Optional[bool] = None
    sku: Optional[str] = Field(None, max_length=100)
    image_url: Optional[str] = Field(None, max_length=512)

    @model_validator(mode="after")
    def price_or_clear(self):
        if self.clear_price and self.price is not None:
            raise ValueError("Set a price or clear it, not both")
        return self


class CombinationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    combination_key: str
    option_values: dict[str, str]
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    quantity: int
    inventory_tracked: bool
    available: bool
    in_stock: bool
    image_url: Optional[str] = None
    sort_order: int


class RegenerationResponse(BaseModel):
    created: int
    archived: int
    total: int
    combinations: list[CombinationResponse]


# ============================================================================
# ADDON SCHEMAS
# ============================================================================


class AddonOption(BaseModel):
    label: str = Field(..., max_length=100)
    value: str = Field(..., max_length=100)
    price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    image_url: Optional[str] = None


class _AddonBase(BaseModel):
    name: str = Field(..., max_length=100)
    description: Optional[str] = None
    # FORMULA is reserved and has no evaluator, so it is not accepted here
    price_type: Literal["fixed", "percentage"] = "fixed"
    price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    is_required: bool = False
    allow_multiple: bool = False
    max_quantity: Optional[int] = Field(None, ge=1)
    required_for_combinations: list[str] = Field(default_factory=list)
    excluded_for_combinations: list[str] = Field(default_factory=list)
    sort_order: int = 0
    is_active: bool = True

    @model_validator(mode="after")
    def check_quantity_rules(self):
        if self.max_quantity is not None and not self.allow_multiple:
            raise ValueError("max_quantity requires allow_multiple")
        overlap = set(self.required_for_combinations) & set(
            self.excluded_for_combinations
        )
        if overlap:
            raise ValueError(
                f"Combinations both required and excluded: {', '.join(sorted(overlap))}"
            )
        return self


class FreeformAddon(_AddonBase):
    field_type: Literal["text", "textarea", "date", "color", "file"]


class NumberAddon(_AddonBase):
    field_type: Literal["number"]
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None

    @model_validator(mode="after")
    def check_range(self):
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError("min_value must not exceed max_value")
        return self


def _unique_option_values(options: list[AddonOption]) -> list[AddonOption]:
    values = [o.value for o in options]
    if len(values) != len(set(values)):
        raise ValueError("Option values must be unique")
    return options


AddonOptions = Annotated[list[AddonOption], AfterValidator(_unique_option_values)]


class ChoiceAddon(_AddonBase):
    field_type: Literal["select", "radio", "image_buttons"]
    options: AddonOptions = Field(..., min_length=1)


class CheckboxAddon(_AddonBase):
    """Checkbox group; with no options it is a single yes/no toggle."""

    field_type: Literal["checkbox"]
    options: AddonOptions = Field(default_factory=list)


AddonDefinition = Annotated[
    Union[FreeformAddon, NumberAddon, ChoiceAddon, CheckboxAddon],
    Field(discriminator="field_type"),
]
addon_definition_adapter = TypeAdapter(AddonDefinition)


class AddonUpdate(BaseModel):
    """Partial update; merged onto the stored addon and re-validated as a whole."""

    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    field_type: Optional[AddonFieldType] = None
    price_type: Optional[AddonPriceType] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    is_required: Optional[bool] = None
    allow_multiple: Optional[bool] = None
    max_quantity: Optional[int] = Field(None, ge=1)
    options: Optional[list[AddonOption]] = None
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None
    required_for_combinations: Optional[list[str]] = None
    excluded_for_combinations: Optional[list[str]] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class AddonResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    name: str
    description: Optional[str] = None
    field_type: AddonFieldType
    price_type: AddonPriceType
    price: Decimal
    is_required: bool
    allow_multiple: bool
    max_quantity: Optional[int] = None
    options: list[dict[str, Any]] = []
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None
    required_for_combinations: list[str] = []
    excluded_for_combinations: list[str] = []
    sort_order: int
    is_active: bool


class ProductDetailResponse(ProductResponse):
    """Storefront product page: option pickers, purchasable combinations, addons."""

    options: list[VariantOptionResponse] = []
    combinations: list[CombinationResponse] = []
    addons: list[AddonResponse] = []


# ============================================================================
# COUPON SCHEMAS
# ============================================================================


def canonical_coupon_code(code: str) -> str:
    code = code.strip().upper()
    if not COUPON_CODE_PATTERN.match(code):
        raise ValueError(
            "Code must be 3-50 characters: letters, digits, hyphen or underscore"
        )
    return code


class CouponBase(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    usage_limit: Optional[int] = Field(None, ge=1)
    per_customer_limit: Optional[int] = Field(None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True
    applicable_product_ids: list[uuid.UUID] = Field(default_factory=list)
    applicable_category_ids: list[uuid.UUID] = Field(default_factory=list)
    excluded_product_ids: list[uuid.UUID] = Field(default_factory=list)
    first_time_customers_only: bool = False


class CouponCreate(CouponBase):
    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return canonical_coupon_code(v)

    @model_validator(mode="after")
    def check_rules(self):
        if (
            self.discount_type == DiscountType.PERCENTAGE
            and self.discount_value > 100
        ):
            raise ValueError("Percentage discount cannot exceed 100")
        if (
            self.starts_at
            and self.ends_at
            and as_utc(self.ends_at) <= as_utc(self.starts_at)
        ):
            raise ValueError("ends_at must be after starts_at")
        return self


class CouponUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    usage_limit: Optional[int] = Field(None, ge=1)
    per_customer_limit: Optional[int] = Field(None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_product_ids: Optional[list[uuid.UUID]] = None
    applicable_category_ids: Optional[list[uuid.UUID]] = None
    excluded_product_ids: Optional[list[uuid.UUID]] = None
    first_time_customers_only: Optional[bool] = None

    @field_validator(
        "discount_type",
        "discount_value",
        "is_active",
        "applicable_product_ids",
        "applicable_category_ids",
        "excluded_product_ids",
        "first_time_customers_only",
    )
    @classmethod
    def not_null(cls, v):
        # Omit a field to keep it; these columns cannot be cleared
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    store_id: uuid.UUID
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    min_purchase_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    per_customer_limit: Optional[int] = None
    times_used: int
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool
    applicable_product_ids: list[str] = []
    applicable_category_ids: list[str] = []
    excluded_product_ids: list[str] = []
    first_time_customers_only: bool


# ============================================================================
# CART SCHEMAS
# ============================================================================


class AddonSelectionInput(BaseModel):
    addon_id: uuid.UUID
    value: Any = None
    quantity: int = Field(1, ge=1)


class CartItemAdd(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(1, ge=1, le=10)
    variant_selection: dict[str, str] = Field(default_factory=dict)
    addons: list[AddonSelectionInput] = Field(default_factory=list)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=0, le=10)  # 0 removes the line


class ApplyCouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    customer_email: Optional[EmailStr] = None


class AddonLineResponse(BaseModel):
    addon_id: uuid.UUID
    name: str
    value: Any = None
    quantity: int
    amount: Decimal


class CartLineResponse(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    combination_id: Optional[uuid.UUID] = None
    variant_label: Optional[str] = None
    quantity: int
    base_price: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    line_total: Optional[Decimal] = None
    addons: list[AddonLineResponse] = []
    available: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class TotalsResponse(BaseModel):
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    shipping_discount: Decimal
    taxable_base: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal


class CartResponse(BaseModel):
    session_id: str
    status: CartStatus
    store_slug: Optional[str] = None
    store_name: Optional[str] = None
    items: list[CartLineResponse] = []
    item_count: int = 0
    coupon_code: Optional[str] = None
    coupon_error: Optional[str] = None
    totals: TotalsResponse
    expires_at: datetime


# ============================================================================
# SHIPPING SCHEMAS
# ============================================================================


class ShippingMethodResponse(BaseModel):
    id: str
    name: str
    price: Decimal
    estimated_days: str


class ShippingQuoteRequest(BaseModel):
    zip_code: str = Field(..., pattern=r"^\d{5}(-\d{4})?$")
    cart_total: Decimal = Field(..., ge=0)


class ShippingRateResponse(ShippingMethodResponse):
    carrier: str


class ShippingQuoteResponse(BaseModel):
    zone: int
    free_shipping_eligible: bool
    rates: list[ShippingRateResponse]


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class CheckoutQuoteRequest(BaseModel):
    shipping_method: str = "standard"
    customer_email: Optional[EmailStr] = None


class CheckoutDetails(BaseModel):
    customer_email: EmailStr
    customer_name: str = Field(..., min_length=1, max_length=255)
    shipping_method: str = "standard"
    shipping_address: Optional[dict[str, Any]] = None
    customer_notes: Optional[str] = None


class PaymentIntentRequest(CheckoutDetails):
    provider: Literal["stripe", "square"] = "stripe"
    source_id: Optional[str] = None  # Square card nonce

    @model_validator(mode="after")
    def square_needs_source(self):
        if self.provider == "square" and not self.source_id:
            raise ValueError("source_id is required for Square payments")
        return self


class PaymentIntentResponse(BaseModel):
    order_number: str
    status: OrderStatus
    payment_status: str
    client_secret: Optional[str] = None
    total: Decimal
    currency: str


class ConfirmPaymentRequest(BaseModel):
    order_number: str


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    combination_id: Optional[uuid.UUID] = None
    product_name: str
    variant_label: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    addon_selections: list[dict[str, Any]] = []


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    store_id: uuid.UUID
    customer_email: str
    customer_name: str
    status: OrderStatus
    payment_method: PaymentMethod
    subtotal: Decimal
    shipping_method: str
    shipping_cost: Decimal
    shipping_discount: Decimal
    discount_amount: Decimal
    coupon_code: Optional[str] = None
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    currency: str
    platform_fee: Decimal
    vendor_payout: Decimal
    items: list[OrderItemResponse] = []
    created_at: datetime
    paid_at: Optional[datetime] = None


# ============================================================================
# INVENTORY SCHEMAS
# ============================================================================


class StockAdjustRequest(BaseModel):
    product_id: uuid.UUID
    combination_id: Optional[uuid.UUID] = None
    quantity_change: int
    notes: Optional[str] = None

    @field_validator("quantity_change")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity_change must not be zero")
        return v


class StockLevelResponse(BaseModel):
    product_id: uuid.UUID
    combination_id: Optional[uuid.UUID] = None
    quantity: int


class LowStockItemResponse(BaseModel):
    store_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    combination_id: Optional[uuid.UUID] = None
    combination_key: Optional[str] = None
    quantity: int
    threshold: int
