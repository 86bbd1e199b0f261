"""Commerce models: carts, coupons, orders, payment events."""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.commerce_service.models.enums import (
    CartStatus,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# CART MODELS
# ============================================================================


class Cart(Base):
    """Server-side cart keyed by an opaque session id."""

    __tablename__ = "carts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    customer_auth_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )

    # A cart holds items from one store at a time; null while empty
    store_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="SET NULL"), nullable=True
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[CartStatus] = mapped_column(
        SAEnum(CartStatus, values_callable=enum_values, name="cart_status_enum"),
        default=CartStatus.ACTIVE,
        server_default="active",
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_carts_status_expires_at", "status", "expires_at"),)

    store = relationship("Store")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.created_at",
    )

    def __repr__(self):
        return f"<Cart {self.session_id} status={self.status}>"


class CartItem(Base):
    """Cart line. Priced from the live catalog every time the cart is read."""

    __tablename__ = "cart_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cart_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    combination_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("variant_combinations.id", ondelete="CASCADE"), nullable=True
    )

    # product + combination + canonical addon selection
    line_key: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # [{"addon_id": "...", "value": ..., "quantity": 1}]
    addon_selections: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("cart_id", "line_key", name="uq_cart_line_key"),
        CheckConstraint("quantity > 0", name="cart_item_positive_quantity"),
    )

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    combination = relationship("VariantCombination")

    def __repr__(self):
        return f"<CartItem product={self.product_id} qty={self.quantity}>"


# ============================================================================
# COUPON MODELS
# ============================================================================


class Coupon(Base):
    """Store-scoped discount code."""

    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)  # Uppercase
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[DiscountType] = mapped_column(
        SAEnum(DiscountType, values_callable=enum_values, name="discount_type_enum"),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )

    # Restrictions
    min_purchase_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    per_customer_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    times_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    starts_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    # Scoping (lists of UUID strings)
    applicable_product_ids: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )
    applicable_category_ids: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )
    excluded_product_ids: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False
    )
    first_time_customers_only: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("store_id", "code", name="uq_coupon_store_code"),
        CheckConstraint(
            "discount_type != 'percentage' OR discount_value <= 100",
            name="coupon_percentage_max_100",
        ),
        CheckConstraint(
            "starts_at IS NULL OR ends_at IS NULL OR ends_at > starts_at",
            name="coupon_window_ordered",
        ),
        CheckConstraint("times_used >= 0", name="coupon_times_used_non_negative"),
    )

    store = relationship("Store")
    redemptions = relationship("CouponRedemption", back_populates="coupon")

    def __repr__(self):
        return f"<Coupon {self.code} {self.discount_type.value}>"


class CouponRedemption(Base):
    """One use of a coupon by one customer on one order."""

    __tablename__ = "coupon_redemptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    customer_key: Mapped[str] = mapped_column(
        String(255), index=True, nullable=False
    )  # Lowercased email
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("coupon_id", "order_id", name="uq_coupon_redemption_order"),
    )

    coupon = relationship("Coupon", back_populates="redemptions")

    def __repr__(self):
        return f"<CouponRedemption coupon={self.coupon_id} order={self.order_id}>"


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Orders. Amounts are frozen at placement time."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    cart_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("carts.id", ondelete="SET NULL"), nullable=True
    )

    # Customer
    customer_auth_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )
    customer_email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shipping_method: Mapped[str] = mapped_column(String(50), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    shipping_discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd")

    # Platform economics
    platform_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    vendor_payout: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )

    # Coupon
    coupon_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True
    )
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payment
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, values_callable=enum_values, name="payment_method_enum"),
        nullable=False,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )  # Gateway transaction id

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, values_callable=enum_values, name="order_status_enum"),
        default=OrderStatus.PENDING_PAYMENT,
        server_default="pending_payment",
    )
    # True while this order holds decremented stock
    stock_reserved: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    store = relationship("Store")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )

    @staticmethod
    def generate_order_number() -> str:
        """Generate a unique order number like MK-20260104-A1B2C."""
        date_part = utc_now().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=5)
        )
        return f"MK-{date_part}-{random_part}"

    def __repr__(self):
        return f"<Order {self.order_number} {self.status.value}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    # RESTRICT: catalog rows referenced by history can only be archived
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    combination_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("variant_combinations.id", ondelete="RESTRICT"),
        nullable=True,
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    combination_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Stock is decremented on confirmation only for tracked lines
    inventory_tracked: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    # [{"addon_id", "name", "value", "quantity", "amount"}]
    addon_selections: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="order_item_positive_quantity"),
    )

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"


class ProcessedPaymentEvent(Base):
    """Gateway webhook events already applied (redelivery guard)."""

    __tablename__ = "processed_payment_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_payment_event"),
    )

    def __repr__(self):
        return f"<ProcessedPaymentEvent {self.provider}:{self.event_id}>"
