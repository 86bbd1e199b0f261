"""Storefront cart router: cart lines and coupon codes.

Carts are addressed by the ``X-Cart-Session`` header. A request without a
live session starts a new cart; the session id to use from then on is
returned in the same header and in the response body.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import cart_limit
from libs.db.session import get_async_db
from services.commerce_service.errors import NotFoundError
from services.commerce_service.routers._helpers import CART_SESSION_HEADER
from services.commerce_service.schemas import (
    AddonLineResponse,
    ApplyCouponRequest,
    CartItemAdd,
    CartItemUpdate,
    CartLineResponse,
    CartResponse,
    TotalsResponse,
)
from services.commerce_service.services import carts
from services.commerce_service.services.addons import AddonSelection
from services.commerce_service.services.carts import CartSummary
from services.commerce_service.services.coupons import customer_key_for
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/cart", tags=["cart"])

SessionHeader = Header(None, alias=CART_SESSION_HEADER)


# ============================================================================
# CART HELPERS
# ============================================================================


def build_cart_response(summary: CartSummary) -> CartResponse:
    cart = summary.cart
    items = []
    for line in summary.lines:
        priced = line.priced
        items.append(
            CartLineResponse(
                id=line.item.id,
                product_id=line.item.product_id,
                product_name=line.product.name if line.product else "Unavailable product",
                combination_id=line.item.combination_id,
                variant_label=priced.variant.label if priced else None,
                quantity=line.item.quantity,
                base_price=priced.base_price if priced else None,
                unit_price=priced.unit_price if priced else None,
                line_total=priced.line_total if priced else None,
                addons=[
                    AddonLineResponse(
                        addon_id=a.addon_id,
                        name=a.name,
                        value=a.value,
                        quantity=a.quantity,
                        amount=a.amount,
                    )
                    for a in (priced.addons if priced else [])
                ],
                available=line.available,
                error_code=line.error.code if line.error else None,
                error_message=line.error.message if line.error else None,
            )
        )

    return CartResponse(
        session_id=cart.session_id,
        status=cart.status,
        store_slug=summary.store.slug if summary.store else None,
        store_name=summary.store.name if summary.store else None,
        items=items,
        item_count=summary.item_count,
        coupon_code=cart.coupon_code,
        coupon_error=summary.coupon_error.message if summary.coupon_error else None,
        totals=TotalsResponse(**summary.totals.to_dict()),
        expires_at=cart.expires_at,
    )


async def _respond(
    db: AsyncSession, cart, response: Response, shipping_method: Optional[str] = None
) -> CartResponse:
    summary = await carts.price_cart(db, cart, shipping_method=shipping_method)
    response.headers[CART_SESSION_HEADER] = cart.session_id
    return build_cart_response(summary)


async def _require_cart(db: AsyncSession, session_id: Optional[str]):
    cart = await carts.get_active_cart(db, session_id)
    if cart is None:
        raise NotFoundError("Cart not found or expired")
    return cart


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("", response_model=CartResponse)
async def get_cart(
    response: Response,
    session_id: Optional[str] = SessionHeader,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get the current cart, starting one if the session has none."""
    cart = await carts.get_or_create_cart(
        db, session_id, current_user.user_id if current_user else None
    )
    await db.commit()
    return await _respond(db, cart, response)


@router.post("/items", response_model=CartResponse)
@cart_limit
async def add_to_cart(
    request: Request,
    response: Response,
    item_in: CartItemAdd,
    session_id: Optional[str] = SessionHeader,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add a product (with variant and addon choices) to the cart."""
    cart = await carts.get_or_create_cart(
        db, session_id, current_user.user_id if current_user else None
    )
    await carts.add_item(
        db,
        cart,
        product_id=item_in.product_id,
        quantity=item_in.quantity,
        variant_selection=item_in.variant_selection,
        addon_selections=[
            AddonSelection(addon_id=a.addon_id, value=a.value, quantity=a.quantity)
            for a in item_in.addons
        ],
    )
    await db.commit()
    return await _respond(db, cart, response)


@router.patch("/items/{line_id}", response_model=CartResponse)
@cart_limit
async def update_cart_item(
    request: Request,
    response: Response,
    line_id: uuid.UUID,
    item_in: CartItemUpdate,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Change a line's quantity; 0 removes it."""
    cart = await _require_cart(db, session_id)
    await carts.update_item_quantity(db, cart, line_id, item_in.quantity)
    await db.commit()
    return await _respond(db, cart, response)


@router.delete("/items/{line_id}", response_model=CartResponse)
@cart_limit
async def remove_cart_item(
    request: Request,
    response: Response,
    line_id: uuid.UUID,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Remove a line from the cart."""
    cart = await _require_cart(db, session_id)
    await carts.remove_item(db, cart, line_id)
    await db.commit()
    return await _respond(db, cart, response)


@router.delete("", response_model=CartResponse)
@cart_limit
async def clear_cart(
    request: Request,
    response: Response,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Empty the cart. Used to resolve a different-store conflict."""
    cart = await _require_cart(db, session_id)
    await carts.clear_cart(db, cart)
    await db.commit()
    return await _respond(db, cart, response)


@router.post("/coupon", response_model=CartResponse)
@cart_limit
async def apply_coupon(
    request: Request,
    response: Response,
    body: ApplyCouponRequest,
    session_id: Optional[str] = SessionHeader,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Apply a coupon code to the cart."""
    cart = await _require_cart(db, session_id)
    email = body.customer_email or (current_user.email if current_user else None)
    await carts.apply_coupon(db, cart, body.code, customer_key_for(email))
    await db.commit()
    return await _respond(db, cart, response)


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    response: Response,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Remove the coupon code from the cart."""
    cart = await _require_cart(db, session_id)
    await carts.remove_coupon(db, cart)
    await db.commit()
    return await _respond(db, cart, response)
