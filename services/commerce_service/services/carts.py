"""Cart sessions.

A cart is addressed by an opaque session id, holds items from a single
store, and slides its expiry forward on every mutation. Lines are stored as
references plus addon selections and re-priced from the live catalog on
every read; prices are frozen only into order items.
"""

import hashlib
import json
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Sequence

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from libs.common.money import ZERO, sum_money
from services.commerce_service.errors import (
    CommerceError,
    CouponIneligibleError,
    DifferentStoreConflictError,
    NotFoundError,
    ValidationError,
)
from services.commerce_service.models import (
    Cart,
    CartItem,
    CartStatus,
    Product,
    Store,
    VariantCombination,
)
from services.commerce_service.services.addons import AddonSelection, is_empty_value
from services.commerce_service.services.coupons import CouponResult, resolve_coupon
from services.commerce_service.services.pricing import (
    PricedLine,
    get_sellable_product,
    price_line,
)
from services.commerce_service.services.shipping import get_shipping_method
from services.commerce_service.services.totals import OrderTotals, assemble_totals
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class CartLine:
    """A stored line plus its current price, or why it cannot be bought."""

    item: CartItem
    product: Optional[Product]
    priced: Optional[PricedLine] = None
    error: Optional[CommerceError] = None

    @property
    def available(self) -> bool:
        return self.priced is not None


@dataclass
class CartSummary:
    cart: Cart
    store: Optional[Store]
    lines: list[CartLine] = field(default_factory=list)
    totals: Optional[OrderTotals] = None
    coupon: Optional[CouponResult] = None
    coupon_error: Optional[CouponIneligibleError] = None

    @property
    def priced_lines(self) -> list[PricedLine]:
        return [line.priced for line in self.lines if line.priced is not None]

    @property
    def item_count(self) -> int:
        return sum(line.item.quantity for line in self.lines)

    @property
    def subtotal(self) -> Decimal:
        return sum_money(line.line_total for line in self.priced_lines)


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def canonical_line_key(
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    selections: Sequence[AddonSelection],
) -> str:
    """Stable hash of product + combination + addon selection (order-insensitive)."""
    payload = {
        "product": str(product_id),
        "combination": str(combination_id) if combination_id else None,
        "addons": sorted(
            (s.to_dict() for s in selections if not is_empty_value(s.value)),
            key=lambda s: s["addon_id"],
        ),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _touch(cart: Cart, now: Optional[datetime] = None) -> None:
    cart.expires_at = (now or utc_now()) + timedelta(seconds=settings.CART_TTL_SECONDS)


def _is_live(cart: Cart, now: datetime) -> bool:
    return cart.status == CartStatus.ACTIVE and as_utc(cart.expires_at) > now


async def load_cart(db: AsyncSession, session_id: str) -> Optional[Cart]:
    result = await db.execute(
        select(Cart)
        .where(Cart.session_id == session_id)
        .options(selectinload(Cart.items), selectinload(Cart.store))
    )
    return result.scalar_one_or_none()


async def get_active_cart(db: AsyncSession, session_id: Optional[str]) -> Optional[Cart]:
    """The live cart for a session, or None. Marks a lapsed cart EXPIRED."""
    if not session_id:
        return None
    cart = await load_cart(db, session_id)
    if cart is None:
        return None
    now = utc_now()
    if cart.status == CartStatus.ACTIVE and not _is_live(cart, now):
        cart.status = CartStatus.EXPIRED
        await db.flush()
    return cart if _is_live(cart, now) else None


async def get_or_create_cart(
    db: AsyncSession,
    session_id: Optional[str],
    customer_auth_id: Optional[str] = None,
) -> Cart:
    """Return the live cart for ``session_id`` or start a new one.

    A new cart always gets a freshly minted session id.
    """
    cart = await get_active_cart(db, session_id)
    if cart is not None:
        if customer_auth_id and not cart.customer_auth_id:
            cart.customer_auth_id = customer_auth_id
        return cart

    cart = Cart(
        session_id=new_session_id(),
        customer_auth_id=customer_auth_id,
        status=CartStatus.ACTIVE,
        items=[],
    )
    _touch(cart)
    db.add(cart)
    await db.flush()
    return await load_cart(db, cart.session_id)


def _selections(item: CartItem) -> list[AddonSelection]:
    return [AddonSelection.from_mapping(s) for s in item.addon_selections or []]


async def _variant_selection(db: AsyncSession, item: CartItem) -> dict[str, str]:
    if item.combination_id is None:
        return {}
    combination = await db.get(VariantCombination, item.combination_id)
    if combination is None:
        raise NotFoundError("Variant no longer exists")
    return dict(combination.option_values)


async def price_cart(
    db: AsyncSession,
    cart: Cart,
    *,
    shipping_method: Optional[str] = None,
    customer_key: Optional[str] = None,
    strict: bool = False,
) -> CartSummary:
    """Price every line from the live catalog and assemble totals.

    In strict mode (checkout) the first problem raises. Otherwise lines that
    can no longer be bought and a coupon that no longer applies are reported
    on the summary and left out of the totals.
    """
    summary = CartSummary(cart=cart, store=cart.store)

    for item in cart.items:
        product = await db.get(Product, item.product_id)
        line = CartLine(item=item, product=product)
        try:
            if product is None:
                raise NotFoundError("Product no longer exists")
            line.priced = await price_line(
                db,
                product,
                item.quantity,
                await _variant_selection(db, item),
                _selections(item),
            )
        except CommerceError as exc:
            if strict:
                raise
            line.error = exc
        summary.lines.append(line)

    subtotal = summary.subtotal
    shipping_cost = (
        get_shipping_method(shipping_method).price if shipping_method else ZERO
    )

    discount = shipping_discount = ZERO
    if cart.coupon_code and cart.store_id and summary.priced_lines:
        try:
            summary.coupon = await resolve_coupon(
                db,
                store_id=cart.store_id,
                code=cart.coupon_code,
                lines=summary.priced_lines,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                customer_key=customer_key,
            )
            discount = summary.coupon.discount
            shipping_discount = summary.coupon.shipping_discount
        except CouponIneligibleError as exc:
            if strict:
                raise
            summary.coupon_error = exc

    summary.totals = assemble_totals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_rate=settings.TAX_RATE,
        discount=discount,
        shipping_discount=shipping_discount,
    )
    return summary


async def _store_summary(db: AsyncSession, cart: Cart) -> dict[str, Any]:
    summary = await price_cart(db, cart)
    return {
        "store_slug": cart.store.slug if cart.store else None,
        "store_name": cart.store.name if cart.store else None,
        "item_count": summary.item_count,
        "total": str(summary.totals.subtotal),
    }


async def add_item(
    db: AsyncSession,
    cart: Cart,
    *,
    product_id: uuid.UUID,
    quantity: int,
    variant_selection: Optional[dict[str, str]] = None,
    addon_selections: Sequence[AddonSelection] = (),
) -> CartItem:
    """Add a line, merging with an identical existing line.

    Raises DifferentStoreConflictError when the cart holds another store's items.
    """
    max_quantity = settings.CART_MAX_LINE_QUANTITY
    if quantity < 1 or quantity > max_quantity:
        raise ValidationError(
            f"Quantity must be between 1 and {max_quantity}", fields=["quantity"]
        )

    product = await get_sellable_product(db, product_id)

    if cart.items and cart.store_id and cart.store_id != product.store_id:
        attempted = await db.get(Store, product.store_id)
        raise DifferentStoreConflictError(
            current_cart=await _store_summary(db, cart),
            attempted_store={"store_slug": attempted.slug, "store_name": attempted.name},
        )

    priced = await price_line(db, product, quantity, variant_selection, addon_selections)
    line_key = canonical_line_key(product.id, priced.variant.combination_id, addon_selections)

    existing = next((i for i in cart.items if i.line_key == line_key), None)
    if existing is not None:
        merged = min(existing.quantity + quantity, max_quantity)
        await price_line(db, product, merged, variant_selection, addon_selections)
        existing.quantity = merged
        item = existing
    else:
        item = CartItem(
            product_id=product.id,
            combination_id=priced.variant.combination_id,
            line_key=line_key,
            quantity=quantity,
            addon_selections=[
                s.to_dict()
                for s in addon_selections
                if not is_empty_value(s.value)
            ],
        )
        cart.items.append(item)

    if cart.store_id != product.store_id:
        cart.store_id = product.store_id
        cart.store = await db.get(Store, product.store_id)
    _touch(cart)
    await db.flush()
    return item


def _find_line(cart: Cart, line_id: uuid.UUID) -> CartItem:
    item = next((i for i in cart.items if i.id == line_id), None)
    if item is None:
        raise NotFoundError("Cart line not found")
    return item


async def update_item_quantity(
    db: AsyncSession, cart: Cart, line_id: uuid.UUID, quantity: int
) -> Optional[CartItem]:
    """Set a line's quantity; 0 removes it."""
    item = _find_line(cart, line_id)
    if quantity == 0:
        await remove_item(db, cart, line_id)
        return None
    if quantity < 0 or quantity > settings.CART_MAX_LINE_QUANTITY:
        raise ValidationError(
            f"Quantity must be between 0 and {settings.CART_MAX_LINE_QUANTITY}",
            fields=["quantity"],
        )

    product = await get_sellable_product(db, item.product_id)
    await price_line(
        db,
        product,
        quantity,
        await _variant_selection(db, item),
        _selections(item),
    )
    item.quantity = quantity
    _touch(cart)
    await db.flush()
    return item


def _reset_if_empty(cart: Cart) -> None:
    if not cart.items:
        cart.store_id = None
        cart.store = None
        cart.coupon_code = None


async def remove_item(db: AsyncSession, cart: Cart, line_id: uuid.UUID) -> None:
    item = _find_line(cart, line_id)
    cart.items.remove(item)
    _reset_if_empty(cart)
    _touch(cart)
    await db.flush()


async def clear_cart(db: AsyncSession, cart: Cart) -> None:
    cart.items.clear()
    _reset_if_empty(cart)
    _touch(cart)
    await db.flush()


async def apply_coupon(
    db: AsyncSession, cart: Cart, code: str, customer_key: Optional[str] = None
) -> CouponResult:
    """Validate a code against the current cart and remember it."""
    summary = await price_cart(db, cart)
    if not summary.priced_lines or cart.store_id is None:
        raise ValidationError("Add items to your cart before applying a coupon")

    result = await resolve_coupon(
        db,
        store_id=cart.store_id,
        code=code,
        lines=summary.priced_lines,
        subtotal=summary.subtotal,
        customer_key=customer_key,
    )
    cart.coupon_code = result.coupon.code
    _touch(cart)
    await db.flush()
    return result


async def remove_coupon(db: AsyncSession, cart: Cart) -> None:
    cart.coupon_code = None
    _touch(cart)
    await db.flush()


async def mark_converted(db: AsyncSession, cart_id: uuid.UUID) -> None:
    await db.execute(
        update(Cart)
        .where(Cart.id == cart_id, Cart.status == CartStatus.ACTIVE)
        .values(status=CartStatus.CONVERTED)
        .execution_options(synchronize_session=False)
    )


async def expire_stale_carts(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Retire ACTIVE carts past their expiry. Returns the count.

    Carts still holding lines become ABANDONED, empty ones EXPIRED.
    """
    cutoff = now or utc_now()
    has_items = select(CartItem.id).where(CartItem.cart_id == Cart.id).exists()
    retired = 0
    for status, condition in (
        (CartStatus.ABANDONED, has_items),
        (CartStatus.EXPIRED, ~has_items),
    ):
        result = await db.execute(
            update(Cart)
            .where(
                Cart.status == CartStatus.ACTIVE,
                Cart.expires_at < cutoff,
                condition,
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        retired += result.rowcount
    return retired
