"""Checkout: order placement, payment confirmation, cancellation and refunds.

Card and cash checkouts price the cart through the same path
(``price_cart`` -> ``assemble_totals``); they only differ in which payment
gateway is used afterwards.

Stock moves at confirmation, never at placement of a card order:

    card:  place_card_order -> PENDING_PAYMENT -> confirm_payment -> PAID
    cash:  place_cash_order -> AWAITING_CASH_COLLECTION (stock reserved at once)

Confirmation flips PENDING_PAYMENT -> PAID with a conditional UPDATE, so a
duplicate webhook finds nothing to flip and changes nothing.
"""

import uuid
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.commerce_service.errors import (
    CommerceError,
    CouponIneligibleError,
    InsufficientStockError,
    NotFoundError,
    PaymentFailedError,
    ValidationError,
)
from services.commerce_service.models import (
    Cart,
    CartStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    ProcessedPaymentEvent,
    Store,
)
from services.commerce_service.schemas import CheckoutDetails
from services.commerce_service.services.carts import (
    CartSummary,
    mark_converted,
    price_cart,
)
from services.commerce_service.services.coupons import (
    customer_key_for,
    redeem_coupon,
    release_coupon,
)
from services.commerce_service.services.inventory import (
    release_on_cancel_or_refund,
    reserve_on_order_confirm,
)
from services.commerce_service.services.payments import (
    CashGateway,
    PaymentGateway,
    PaymentStatus,
    PaymentVerdict,
    get_gateway,
)
from services.commerce_service.services.totals import platform_fee_split
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()

CANCELLABLE_STATUSES = frozenset(
    {
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.AWAITING_CASH_COLLECTION,
        OrderStatus.PAYMENT_FAILED,
    }
)
# Conflict orders were charged but never confirmed; the vendor refunds them
REFUNDABLE_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.FULFILLED,
        OrderStatus.STOCK_CONFLICT,
        OrderStatus.COUPON_CONFLICT,
    }
)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_order(
    db: AsyncSession, order_id: uuid.UUID, refresh: bool = False
) -> Order:
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    order = (await db.execute(query)).scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.order_number == order_number)
        .options(selectinload(Order.items))
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def get_order_by_payment_reference(
    db: AsyncSession, reference: str
) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.payment_reference == reference)
        .options(selectinload(Order.items))
    )
    return result.scalar_one_or_none()


async def _event_seen(db: AsyncSession, provider: str, event_id: str) -> bool:
    result = await db.execute(
        select(ProcessedPaymentEvent.id).where(
            ProcessedPaymentEvent.provider == provider,
            ProcessedPaymentEvent.event_id == event_id,
        )
    )
    return result.scalar_one_or_none() is not None


def _record_event(
    db: AsyncSession,
    provider: Optional[str],
    event_id: Optional[str],
    event_type: str,
    order_id: uuid.UUID,
) -> None:
    if provider and event_id:
        db.add(
            ProcessedPaymentEvent(
                provider=provider,
                event_id=event_id,
                event_type=event_type,
                order_id=order_id,
            )
        )


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------


async def quote(
    db: AsyncSession,
    cart: Cart,
    shipping_method: str = "standard",
    customer_email: Optional[str] = None,
) -> CartSummary:
    """Strictly priced totals for the cart; any problem raises."""
    if not cart.items:
        raise ValidationError("Your cart is empty")
    return await price_cart(
        db,
        cart,
        shipping_method=shipping_method,
        customer_key=customer_key_for(customer_email),
        strict=True,
    )


async def _build_order(
    db: AsyncSession,
    cart: Cart,
    summary: CartSummary,
    details: CheckoutDetails,
    payment_method: PaymentMethod,
    status: OrderStatus,
) -> Order:
    store = summary.store or await db.get(Store, cart.store_id)
    totals = summary.totals
    platform_fee, vendor_payout = platform_fee_split(totals.total, store.plan)
    coupon = summary.coupon.coupon if summary.coupon else None

    order = Order(
        order_number=Order.generate_order_number(),
        store_id=store.id,
        cart_id=cart.id,
        customer_auth_id=cart.customer_auth_id,
        customer_email=str(details.customer_email),
        customer_name=details.customer_name,
        shipping_address=details.shipping_address,
        customer_notes=details.customer_notes,
        subtotal=totals.subtotal,
        shipping_method=details.shipping_method,
        shipping_cost=totals.shipping_cost,
        shipping_discount=totals.shipping_discount,
        discount_amount=totals.discount,
        tax_rate=totals.tax_rate,
        tax_amount=totals.tax,
        total=totals.total,
        currency=settings.CURRENCY,
        platform_fee=platform_fee,
        vendor_payout=vendor_payout,
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        payment_method=payment_method,
        status=status,
        stock_reserved=False,
        items=[
            OrderItem(
                product_id=line.product_id,
                combination_id=line.variant.combination_id,
                product_name=line.product.name,
                variant_label=line.variant.label,
                combination_key=line.variant.combination_key,
                sku=line.variant.sku,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                inventory_tracked=line.variant.inventory_tracked,
                addon_selections=[a.to_snapshot() for a in line.addons],
            )
            for line in summary.priced_lines
        ],
    )
    db.add(order)
    await db.flush()
    return order


async def _reserve_order_stock(db: AsyncSession, order: Order) -> None:
    for item in order.items:
        if not item.inventory_tracked:
            continue
        await reserve_on_order_confirm(
            db,
            store_id=order.store_id,
            product_id=item.product_id,
            combination_id=item.combination_id,
            quantity=item.quantity,
            order_id=order.id,
        )
    order.stock_reserved = True


async def _redeem_order_coupon(db: AsyncSession, order: Order) -> None:
    if order.coupon_id is None:
        return
    await redeem_coupon(
        db,
        coupon_id=order.coupon_id,
        order=order,
        customer_key=customer_key_for(order.customer_email),
    )


async def place_cash_order(
    db: AsyncSession, cart: Cart, details: CheckoutDetails
) -> Order:
    """Confirm a cash order at once: stock and coupon are taken in one transaction."""
    if not cart.items:
        raise ValidationError("Your cart is empty")
    store = cart.store or await db.get(Store, cart.store_id)
    if not store.accepts_cash:
        raise ValidationError(
            f"{store.name} does not accept cash payments", fields=["payment_method"]
        )

    try:
        summary = await quote(db, cart, details.shipping_method, details.customer_email)
        order = await _build_order(
            db,
            cart,
            summary,
            details,
            PaymentMethod.CASH,
            OrderStatus.AWAITING_CASH_COLLECTION,
        )
        verdict = await CashGateway().create_payment(
            amount=order.total, currency=order.currency, reference=order.order_number
        )
        order.payment_reference = verdict.external_id
        await _reserve_order_stock(db, order)
        await _redeem_order_coupon(db, order)
        cart.status = CartStatus.CONVERTED
        await db.commit()
    except CommerceError:
        await db.rollback()
        raise

    logger.info(
        "Cash order %s placed for store %s (total=%s)",
        order.order_number,
        store.slug,
        order.total,
    )
    return order


async def place_card_order(
    db: AsyncSession,
    cart: Cart,
    details: CheckoutDetails,
    provider: PaymentMethod,
    source_id: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
) -> tuple[Order, PaymentVerdict]:
    """Create a pending order and a gateway payment for it. No stock moves here."""
    summary = await quote(db, cart, details.shipping_method, details.customer_email)
    gateway = gateway or get_gateway(provider)

    order = await _build_order(
        db, cart, summary, details, provider, OrderStatus.PENDING_PAYMENT
    )
    await db.commit()
    logger.info(
        "Order %s pending %s payment (total=%s)",
        order.order_number,
        provider.value,
        order.total,
    )

    try:
        verdict = await gateway.create_payment(
            amount=order.total,
            currency=order.currency,
            reference=order.order_number,
            source_id=source_id,
        )
    except PaymentFailedError as exc:
        await fail_payment(db, order.id, exc.message)
        raise

    order.payment_reference = verdict.external_id
    await db.commit()

    if verdict.status == PaymentStatus.SUCCEEDED:
        order = await confirm_payment(db, order.id)
    elif verdict.status == PaymentStatus.FAILED:
        reason = verdict.message or "Payment was declined"
        await fail_payment(db, order.id, reason)
        raise PaymentFailedError(reason, details={"order_number": order.order_number})
    return order, verdict


# ---------------------------------------------------------------------------
# Payment outcome
# ---------------------------------------------------------------------------


async def _mark_conflict(
    db: AsyncSession,
    order_id: uuid.UUID,
    status: OrderStatus,
    reason: str,
    provider: Optional[str],
    event_id: Optional[str],
) -> None:
    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING_PAYMENT)
        .values(status=status, failure_reason=reason)
        .execution_options(synchronize_session=False)
    )
    _record_event(db, provider, event_id, "confirmation_conflict", order_id)
    await db.commit()


async def confirm_payment(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    provider: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Order:
    """Mark a pending order PAID, reserve its stock and redeem its coupon.

    Idempotent: a repeated event id, or an order no longer pending, is a no-op.
    When stock or the coupon ran out in the meantime nothing is kept, the
    order moves to STOCK_CONFLICT / COUPON_CONFLICT and the error propagates.
    """
    if provider and event_id and await _event_seen(db, provider, event_id):
        logger.info("Duplicate %s event %s ignored", provider, event_id)
        return await get_order(db, order_id, refresh=True)

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING_PAYMENT)
        .values(status=OrderStatus.PAID, paid_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        order = await get_order(db, order_id, refresh=True)
        logger.info(
            "Order %s is %s; confirmation ignored",
            order.order_number,
            order.status.value,
        )
        return order

    order = await get_order(db, order_id, refresh=True)
    try:
        await _reserve_order_stock(db, order)
        await _redeem_order_coupon(db, order)
        if order.cart_id:
            await mark_converted(db, order.cart_id)
        _record_event(db, provider, event_id, "payment_succeeded", order.id)
        await db.commit()
    except (InsufficientStockError, CouponIneligibleError) as exc:
        await db.rollback()
        status = (
            OrderStatus.STOCK_CONFLICT
            if isinstance(exc, InsufficientStockError)
            else OrderStatus.COUPON_CONFLICT
        )
        await _mark_conflict(db, order_id, status, exc.message, provider, event_id)
        logger.warning(
            "Order %s paid but could not be confirmed: %s", order_id, exc.code
        )
        raise

    logger.info("Order %s confirmed (PAID)", order.order_number)
    return await get_order(db, order_id, refresh=True)


async def fail_payment(
    db: AsyncSession,
    order_id: uuid.UUID,
    reason: Optional[str] = None,
    *,
    provider: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Order:
    """PENDING_PAYMENT -> PAYMENT_FAILED. No stock moves."""
    if provider and event_id and await _event_seen(db, provider, event_id):
        logger.info("Duplicate %s event %s ignored", provider, event_id)
        return await get_order(db, order_id, refresh=True)

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING_PAYMENT)
        .values(status=OrderStatus.PAYMENT_FAILED, failure_reason=reason)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        _record_event(db, provider, event_id, "payment_failed", order_id)
        logger.info("Order %s payment failed: %s", order_id, reason)
    await db.commit()
    return await get_order(db, order_id, refresh=True)


async def confirm_from_gateway(
    db: AsyncSession, order: Order, gateway: Optional[PaymentGateway] = None
) -> Order:
    """Ask the gateway how a pending card payment went and apply the answer."""
    if order.status != OrderStatus.PENDING_PAYMENT or not order.payment_reference:
        return order
    gateway = gateway or get_gateway(order.payment_method)
    verdict = await gateway.retrieve_payment(order.payment_reference)
    if verdict.status == PaymentStatus.SUCCEEDED:
        return await confirm_payment(db, order.id)
    if verdict.status == PaymentStatus.FAILED:
        return await fail_payment(db, order.id, verdict.message or "Payment was declined")
    return order


async def handle_stripe_event(db: AsyncSession, event: dict) -> Optional[Order]:
    """Apply a verified Stripe webhook event. Unknown events are ignored."""
    event_type = event.get("type")
    event_id = event.get("id")
    intent = (event.get("data") or {}).get("object") or {}

    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.info("Ignoring Stripe event %s (%s)", event_id, event_type)
        return None

    order = None
    if intent.get("id"):
        order = await get_order_by_payment_reference(db, intent["id"])
    order_number = (intent.get("metadata") or {}).get("order_number")
    if order is None and order_number:
        try:
            order = await get_order_by_number(db, order_number)
        except NotFoundError:
            order = None
    if order is None:
        logger.warning("Stripe event %s references no known order", event_id)
        return None

    if event_type == "payment_intent.succeeded":
        return await confirm_payment(db, order.id, provider="stripe", event_id=event_id)

    error = intent.get("last_payment_error") or {}
    return await fail_payment(
        db,
        order.id,
        error.get("message") or "Payment failed",
        provider="stripe",
        event_id=event_id,
    )


async def mark_cash_collected(
    db: AsyncSession, order: Order, performed_by: str
) -> Order:
    """AWAITING_CASH_COLLECTION -> PAID. Stock and coupon were taken at placement."""
    order_id, order_number = order.id, order.order_number
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.AWAITING_CASH_COLLECTION,
        )
        .values(status=OrderStatus.PAID, paid_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ValidationError(
            f"Order {order_number} is not awaiting cash collection",
            fields=["status"],
        )
    await db.commit()
    logger.info("Cash collected for order %s by %s", order_number, performed_by)
    return await get_order(db, order_id, refresh=True)


# ---------------------------------------------------------------------------
# Cancellation and refunds
# ---------------------------------------------------------------------------


async def _release_once(db: AsyncSession, order: Order) -> None:
    """Give back the order's stock if it still holds it.

    The ``stock_reserved`` flag is cleared with a conditional UPDATE first,
    so concurrent cancel/refund calls release at most once.
    """
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.stock_reserved.is_(True))
        .values(stock_reserved=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return
    for item in order.items:
        if not item.inventory_tracked:
            continue
        await release_on_cancel_or_refund(
            db,
            store_id=order.store_id,
            product_id=item.product_id,
            combination_id=item.combination_id,
            quantity=item.quantity,
            order_id=order.id,
        )
    order.stock_reserved = False


async def _transition(
    db: AsyncSession,
    order: Order,
    allowed: frozenset,
    action: str,
    **values,
) -> None:
    """Apply a status change only if the stored status still allows it.

    The guard is evaluated in the UPDATE itself, so a confirmation that
    committed after ``order`` was loaded is never overwritten.
    """
    order_number = order.order_number
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await get_order(db, order.id, refresh=True)
        raise ValidationError(
            f"Order {order_number} cannot be {action} ({current.status.value})",
            fields=["status"],
        )


async def cancel_order(db: AsyncSession, order: Order, performed_by: str) -> Order:
    order_id, order_number = order.id, order.order_number
    await _transition(
        db,
        order,
        CANCELLABLE_STATUSES,
        "cancelled",
        status=OrderStatus.CANCELLED,
        cancelled_at=utc_now(),
    )
    await _release_once(db, order)
    await release_coupon(db, order_id)
    await db.commit()
    logger.info("Order %s cancelled by %s", order_number, performed_by)
    return await get_order(db, order_id, refresh=True)


async def refund_order(
    db: AsyncSession,
    order: Order,
    performed_by: str,
    gateway: Optional[PaymentGateway] = None,
) -> Order:
    """Refund a paid (or conflicted) order.

    The status is claimed first and only committed once the provider has
    accepted the refund; a declined refund rolls the claim back.
    """
    order_id, order_number = order.id, order.order_number
    payment_method, reference, total = (
        order.payment_method,
        order.payment_reference,
        order.total,
    )
    await _transition(
        db,
        order,
        REFUNDABLE_STATUSES,
        "refunded",
        status=OrderStatus.REFUNDED,
        refunded_at=utc_now(),
    )
    if payment_method != PaymentMethod.CASH and reference:
        gateway = gateway or get_gateway(payment_method)
        try:
            verdict = await gateway.refund_payment(reference, total)
        except CommerceError:
            await db.rollback()
            raise
        if verdict.status == PaymentStatus.FAILED:
            await db.rollback()
            raise PaymentFailedError(
                "The payment provider declined the refund",
                details={"order_number": order_number},
            )

    await _release_once(db, order)
    await db.commit()
    logger.info("Order %s refunded by %s", order_number, performed_by)
    return await get_order(db, order_id, refresh=True)
