"""Catalog models: stores, categories, products, variant options/combinations, addons."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.commerce_service.models.enums import (
    PLAN_PLATFORM_FEE_PERCENT,
    AddonFieldType,
    AddonPriceType,
    ProductStatus,
    StorePlan,
    VariantAxis,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# STORES
# ============================================================================


class Store(Base):
    """A vendor storefront on the platform."""

    __tablename__ = "stores"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_auth_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    plan: Mapped[StorePlan] = mapped_column(
        SAEnum(StorePlan, values_callable=enum_values, name="store_plan_enum"),
        default=StorePlan.TRIAL,
        server_default="trial",
    )

    # Cash payments (pickup, collected manually)
    accepts_cash: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    cash_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    products = relationship("Product", back_populates="store")
    categories = relationship("Category", back_populates="store")

    @property
    def platform_fee_percent(self) -> int:
        return PLAN_PLATFORM_FEE_PERCENT[self.plan]

    def __repr__(self):
        return f"<Store {self.slug}>"


class Category(Base):
    """Store-scoped product category."""

    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("store_id", "slug", name="uq_category_store_slug"),
    )

    store = relationship("Store", back_populates="categories")
    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category {self.slug}>"


# ============================================================================
# PRODUCTS
# ============================================================================


class Product(Base):
    """Sellable item owned by exactly one store."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )  # "was" price for sale display

    # Inventory (quantity only used when the product has no variant axes)
    track_inventory: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=5, server_default="5"
    )

    status: Mapped[ProductStatus] = mapped_column(
        SAEnum(ProductStatus, values_callable=enum_values, name="product_status_enum"),
        default=ProductStatus.DRAFT,
        server_default="draft",
    )

    # Variant mode: multi-axis combinations vs. legacy single-axis variants
    use_multi_variants: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    variant_axes: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )  # e.g. ["SIZE", "COLOR"], in display order

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("store_id", "slug", name="uq_product_store_slug"),
        CheckConstraint("base_price >= 0", name="product_price_non_negative"),
        CheckConstraint("quantity >= 0", name="product_quantity_non_negative"),
    )

    store = relationship("Store", back_populates="products")
    category = relationship("Category", back_populates="products")
    variant_options = relationship(
        "VariantOption",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="VariantOption.sort_order",
    )
    # Combinations are archived, never deleted; no delete-orphan cascade.
    combinations = relationship(
        "VariantCombination",
        back_populates="product",
        order_by="VariantCombination.sort_order",
    )
    addons = relationship(
        "ProductAddon",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductAddon.sort_order",
    )

    @property
    def has_variants(self) -> bool:
        return bool(self.variant_axes)

    def __repr__(self):
        return f"<Product {self.slug}>"


class VariantOption(Base):
    """One admissible value on one axis of one product (e.g. COLOR=red)."""

    __tablename__ = "variant_options"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )

    axis: Mapped[VariantAxis] = mapped_column(
        SAEnum(VariantAxis, values_callable=enum_values, name="variant_axis_enum"),
        nullable=False,
    )
    value: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    hex_color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    __table_args__ = (
        UniqueConstraint("product_id", "axis", "value", name="uq_variant_option"),
    )

    product = relationship("Product", back_populates="variant_options")

    def __repr__(self):
        return f"<VariantOption {self.axis.value}:{self.value}>"


class VariantCombination(Base):
    """One purchasable cell in the cross-product of a product's axes."""

    __tablename__ = "variant_combinations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )

    combination_key: Mapped[str] = mapped_column(
        String(500), nullable=False
    )  # "COLOR:red|SIZE:M"
    option_values: Mapped[dict] = mapped_column(
        JSON, nullable=False
    )  # {"COLOR": "red", "SIZE": "M"}

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Pricing override (null = use product base price)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    quantity: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    inventory_tracked: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    available: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )  # Vendor-controlled visibility; false once no longer producible
    in_stock: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )  # Derived: quantity > 0

    image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint(
            "product_id", "combination_key", name="uq_variant_combination_key"
        ),
        CheckConstraint("quantity >= 0", name="combination_quantity_non_negative"),
    )

    product = relationship("Product", back_populates="combinations")

    @property
    def label(self) -> str:
        """Human-readable selection, axis order as stored ("red / M")."""
        return " / ".join(str(v) for v in self.option_values.values())

    def __repr__(self):
        return f"<VariantCombination {self.combination_key} qty={self.quantity}>"


# ============================================================================
# ADDONS
# ============================================================================


class ProductAddon(Base):
    """Optional per-product customization (gift wrap, engraving, ...)."""

    __tablename__ = "product_addons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    field_type: Mapped[AddonFieldType] = mapped_column(
        SAEnum(
            AddonFieldType, values_callable=enum_values, name="addon_field_type_enum"
        ),
        default=AddonFieldType.TEXT,
        nullable=False,
    )
    price_type: Mapped[AddonPriceType] = mapped_column(
        SAEnum(
            AddonPriceType, values_callable=enum_values, name="addon_price_type_enum"
        ),
        default=AddonPriceType.FIXED,
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )  # Flat amount, or percent of base price

    is_required: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    allow_multiple: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Choice fields: [{"label": "Gold", "value": "gold", "price": "5.00"}]
    options: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # NUMBER fields
    min_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    max_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Conditional availability by combination key
    required_for_combinations: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )
    excluded_for_combinations: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )

    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    product = relationship("Product", back_populates="addons")

    def __repr__(self):
        return f"<ProductAddon {self.name} {self.price_type.value}>"
