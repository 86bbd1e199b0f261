"""Storefront checkout router: quotes, order placement, payment webhooks and order lookup."""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.rate_limit import payment_limit
from libs.db.session import get_async_db
from services.commerce_service.errors import (
    CouponIneligibleError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from services.commerce_service.models import Order, PaymentMethod
from services.commerce_service.routers._helpers import CART_SESSION_HEADER
from services.commerce_service.routers.cart import build_cart_response
from services.commerce_service.schemas import (
    CartResponse,
    CheckoutDetails,
    CheckoutQuoteRequest,
    ConfirmPaymentRequest,
    OrderResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
)
from services.commerce_service.services import checkout
from services.commerce_service.services.carts import get_active_cart
from services.commerce_service.services.payments import verify_stripe_signature
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

router = APIRouter(tags=["checkout"])
logger = get_logger(__name__)
settings = get_settings()

SessionHeader = Header(None, alias=CART_SESSION_HEADER)


async def _require_cart(db: AsyncSession, session_id: Optional[str]):
    cart = await get_active_cart(db, session_id)
    if cart is None:
        raise NotFoundError("Cart not found or expired")
    return cart


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post("/checkout/quote", response_model=CartResponse)
async def checkout_quote(
    body: CheckoutQuoteRequest,
    response: Response,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Final totals for the cart with a shipping method. Any problem is an error."""
    cart = await _require_cart(db, session_id)
    summary = await checkout.quote(
        db, cart, body.shipping_method, body.customer_email
    )
    response.headers[CART_SESSION_HEADER] = cart.session_id
    return build_cart_response(summary)


@router.post("/checkout/payment-intent", response_model=PaymentIntentResponse)
@payment_limit
async def create_payment_intent(
    request: Request,
    body: PaymentIntentRequest,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Place a card order and start its payment with the chosen provider."""
    cart = await _require_cart(db, session_id)
    order, verdict = await checkout.place_card_order(
        db,
        cart,
        body,
        provider=PaymentMethod(body.provider),
        source_id=body.source_id,
    )
    return PaymentIntentResponse(
        order_number=order.order_number,
        status=order.status,
        payment_status=verdict.status.value,
        client_secret=verdict.client_secret,
        total=order.total,
        currency=order.currency,
    )


@router.post("/checkout/cash-order", response_model=OrderResponse)
@payment_limit
async def place_cash_order(
    request: Request,
    body: CheckoutDetails,
    session_id: Optional[str] = SessionHeader,
    db: AsyncSession = Depends(get_async_db),
):
    """Place a cash-on-pickup order. Stock is reserved immediately."""
    cart = await _require_cart(db, session_id)
    return await checkout.place_cash_order(db, cart, body)


@router.post("/checkout/confirm", response_model=OrderResponse)
@payment_limit
async def confirm_payment(
    request: Request,
    body: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Check a pending card payment with its provider and apply the outcome."""
    order = await checkout.get_order_by_number(db, body.order_number)
    return await checkout.confirm_from_gateway(db, order)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_async_db),
):
    """Receive Stripe payment events. Signature is verified against the raw body."""
    payload = await request.body()
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        raise ValidationError("Webhook endpoint is not configured")
    verify_stripe_signature(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValidationError("Webhook body is not valid JSON") from exc

    try:
        order = await checkout.handle_stripe_event(db, event)
    except (InsufficientStockError, CouponIneligibleError) as exc:
        # The order is already marked for vendor follow-up; a retry changes nothing
        return {"received": True, "status": "conflict", "code": exc.code}

    return {
        "received": True,
        "order_number": order.order_number if order else None,
        "status": order.status.value if order else "ignored",
    }


# ============================================================================
# ORDERS
# ============================================================================


@router.get("/orders/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    email: str = Query(..., description="Email used at checkout"),
    db: AsyncSession = Depends(get_async_db),
):
    """Guest order lookup by order number and checkout email."""
    order = await checkout.get_order_by_number(db, order_number)
    if order.customer_email.lower() != email.strip().lower():
        raise NotFoundError("Order not found")
    return order


@router.get("/my/orders", response_model=list[OrderResponse])
async def list_my_orders(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Orders placed while signed in."""
    result = await db.execute(
        select(Order)
        .where(Order.customer_auth_id == current_user.user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
    )
    return result.scalars().all()
