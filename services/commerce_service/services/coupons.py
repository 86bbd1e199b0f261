"""Coupon resolver and coupon management.

Eligibility checks run in a fixed order and the first failure wins, so the
caller always gets the most fundamental reason a code does not apply.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from libs.common.money import ZERO, percent_of, round_money, sum_money
from services.commerce_service.errors import CouponIneligibleError, ValidationError
from services.commerce_service.models import (
    CONFIRMED_ORDER_STATUSES,
    Coupon,
    CouponRedemption,
    DiscountType,
    Order,
    OrderStatus,
)
from services.commerce_service.schemas import (
    CouponCreate,
    CouponUpdate,
    canonical_coupon_code,
)
from services.commerce_service.services.pricing import PricedLine
from sqlalchemy import (
    DateTime,
    Numeric,
    String,
    Uuid,
    delete,
    func,
    insert,
    literal,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Orders that count as a past purchase for first-time-customer coupons
PURCHASE_STATUSES = CONFIRMED_ORDER_STATUSES | {OrderStatus.REFUNDED}


@dataclass(frozen=True)
class CouponResult:
    coupon: Coupon
    eligible_subtotal: Decimal
    discount: Decimal
    shipping_discount: Decimal


def normalize_code(code: str) -> str:
    try:
        return canonical_coupon_code(code)
    except ValueError as exc:
        raise ValidationError(str(exc), fields=["code"]) from exc


def customer_key_for(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


def _has_inclusions(coupon: Coupon) -> bool:
    return bool(coupon.applicable_product_ids or coupon.applicable_category_ids)


def line_matches(coupon: Coupon, line: PricedLine) -> bool:
    """True when the line is targeted by the coupon's inclusion lists."""
    if not _has_inclusions(coupon):
        return True
    if str(line.product_id) in (coupon.applicable_product_ids or []):
        return True
    return line.category_id is not None and str(line.category_id) in (
        coupon.applicable_category_ids or []
    )


def eligible_subtotal(coupon: Coupon, lines: Sequence[PricedLine]) -> Decimal:
    """Subtotal of lines the coupon targets; the whole cart without inclusion lists."""
    return sum_money(line.line_total for line in lines if line_matches(coupon, line))


def check_eligibility(
    coupon: Optional[Coupon],
    *,
    store_id: uuid.UUID,
    lines: Sequence[PricedLine],
    subtotal: Decimal,
    now: datetime,
    customer_uses: Optional[int] = None,
    prior_purchases: Optional[int] = None,
) -> None:
    """Raise CouponIneligibleError for the first failing check.

    ``customer_uses`` / ``prior_purchases`` are None when the customer is not
    known yet; those checks are then left for checkout.
    """
    if coupon is None or coupon.store_id != store_id or not coupon.is_active:
        raise CouponIneligibleError(
            CouponIneligibleError.INVALID_CODE, "This coupon code is not valid"
        )

    if (coupon.starts_at and now < as_utc(coupon.starts_at)) or (
        coupon.ends_at and now > as_utc(coupon.ends_at)
    ):
        raise CouponIneligibleError(
            CouponIneligibleError.EXPIRED, "This coupon is not currently active"
        )

    if coupon.usage_limit is not None and coupon.times_used >= coupon.usage_limit:
        raise CouponIneligibleError(
            CouponIneligibleError.USAGE_LIMIT_REACHED,
            "This coupon has reached its usage limit",
        )

    if (
        coupon.per_customer_limit is not None
        and customer_uses is not None
        and customer_uses >= coupon.per_customer_limit
    ):
        raise CouponIneligibleError(
            CouponIneligibleError.CUSTOMER_LIMIT_REACHED,
            "You have already used this coupon the maximum number of times",
        )

    if coupon.min_purchase_amount is not None and subtotal < coupon.min_purchase_amount:
        raise CouponIneligibleError(
            CouponIneligibleError.MIN_PURCHASE_NOT_MET,
            f"Minimum purchase of ${coupon.min_purchase_amount} required",
            details={"min_purchase_amount": str(coupon.min_purchase_amount)},
        )

    if (
        coupon.first_time_customers_only
        and prior_purchases is not None
        and prior_purchases > 0
    ):
        raise CouponIneligibleError(
            CouponIneligibleError.NOT_FIRST_TIME_CUSTOMER,
            "This coupon is for first-time customers only",
        )

    excluded = set(coupon.excluded_product_ids or [])
    if any(str(line.product_id) in excluded for line in lines) or not any(
        line_matches(coupon, line) for line in lines
    ):
        raise CouponIneligibleError(
            CouponIneligibleError.NOT_APPLICABLE,
            "This coupon does not apply to the items in your cart",
        )


def compute_discount(
    coupon: Coupon, eligible: Decimal, shipping_cost: Decimal
) -> tuple[Decimal, Decimal]:
    """Return ``(discount, shipping_discount)``."""
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = percent_of(eligible, coupon.discount_value)
        if coupon.max_discount_amount is not None:
            discount = min(discount, round_money(coupon.max_discount_amount))
        return discount, ZERO
    if coupon.discount_type == DiscountType.FIXED_AMOUNT:
        return min(round_money(coupon.discount_value), eligible), ZERO
    return ZERO, round_money(shipping_cost)


async def get_coupon_by_code(
    db: AsyncSession, store_id: uuid.UUID, code: str
) -> Optional[Coupon]:
    result = await db.execute(
        select(Coupon).where(Coupon.store_id == store_id, Coupon.code == code)
    )
    return result.scalar_one_or_none()


async def count_customer_uses(
    db: AsyncSession, coupon_id: uuid.UUID, customer_key: str
) -> int:
    result = await db.execute(
        select(func.count(CouponRedemption.id)).where(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.customer_key == customer_key,
        )
    )
    return result.scalar_one()


async def count_prior_purchases(
    db: AsyncSession,
    store_id: uuid.UUID,
    customer_key: str,
    exclude_order_id: Optional[uuid.UUID] = None,
) -> int:
    query = select(func.count(Order.id)).where(
        Order.store_id == store_id,
        func.lower(Order.customer_email) == customer_key,
        Order.status.in_(list(PURCHASE_STATUSES)),
    )
    if exclude_order_id is not None:
        query = query.where(Order.id != exclude_order_id)
    result = await db.execute(query)
    return result.scalar_one()


async def resolve_coupon(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    code: str,
    lines: Sequence[PricedLine],
    subtotal: Decimal,
    shipping_cost: Decimal = ZERO,
    customer_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CouponResult:
    """Check a code against a priced cart and compute its discount."""
    code = normalize_code(code)
    coupon = await get_coupon_by_code(db, store_id, code)

    customer_uses = prior_purchases = None
    if coupon is not None and customer_key:
        if coupon.per_customer_limit is not None:
            customer_uses = await count_customer_uses(db, coupon.id, customer_key)
        if coupon.first_time_customers_only:
            prior_purchases = await count_prior_purchases(db, store_id, customer_key)

    try:
        check_eligibility(
            coupon,
            store_id=store_id,
            lines=lines,
            subtotal=subtotal,
            now=now or utc_now(),
            customer_uses=customer_uses,
            prior_purchases=prior_purchases,
        )
    except CouponIneligibleError as exc:
        logger.info("Coupon %s rejected for store %s: %s", code, store_id, exc.code)
        raise

    eligible = eligible_subtotal(coupon, lines)
    discount, shipping_discount = compute_discount(coupon, eligible, shipping_cost)
    return CouponResult(
        coupon=coupon,
        eligible_subtotal=eligible,
        discount=discount,
        shipping_discount=shipping_discount,
    )


async def redeem_coupon(
    db: AsyncSession,
    *,
    coupon_id: uuid.UUID,
    order: Order,
    customer_key: str,
) -> CouponRedemption:
    """Consume one use of a coupon for a confirmed order.

    Both limits are enforced inside the writes themselves: ``times_used`` is
    incremented with a conditional UPDATE, and the redemption row is only
    inserted while the customer's count is below ``per_customer_limit``.
    The UPDATE runs first so it locks the coupon row for the count.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            or_(Coupon.usage_limit.is_(None), Coupon.times_used < Coupon.usage_limit),
        )
        .values(times_used=Coupon.times_used + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Coupon %s exhausted while confirming %s", coupon_id, order.order_number)
        raise CouponIneligibleError(
            CouponIneligibleError.USAGE_LIMIT_REACHED,
            "This coupon has reached its usage limit",
        )

    redemption_id = uuid.uuid4()
    customer_uses = (
        select(func.count(CouponRedemption.id))
        .where(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.customer_key == customer_key,
        )
        .correlate(None)
        .scalar_subquery()
    )
    row = select(
        literal(redemption_id, Uuid),
        literal(coupon_id, Uuid),
        literal(order.id, Uuid),
        literal(customer_key, String(255)),
        literal(order.discount_amount + order.shipping_discount, Numeric(12, 2)),
        literal(utc_now(), DateTime(timezone=True)),
    ).where(
        Coupon.id == coupon_id,
        or_(
            Coupon.per_customer_limit.is_(None),
            customer_uses < Coupon.per_customer_limit,
        ),
    )
    result = await db.execute(
        insert(CouponRedemption).from_select(
            [
                CouponRedemption.id,
                CouponRedemption.coupon_id,
                CouponRedemption.order_id,
                CouponRedemption.customer_key,
                CouponRedemption.discount_amount,
                CouponRedemption.created_at,
            ],
            row,
        )
    )
    if result.rowcount != 1:
        logger.info("Coupon %s per-customer limit reached for %s", coupon_id, customer_key)
        raise CouponIneligibleError(
            CouponIneligibleError.CUSTOMER_LIMIT_REACHED,
            "You have already used this coupon the maximum number of times",
        )
    return await db.get(CouponRedemption, redemption_id)


async def release_coupon(db: AsyncSession, order_id: uuid.UUID) -> bool:
    """Give back the coupon use held by a cancelled order, if any."""
    redemption = (
        await db.execute(
            select(CouponRedemption).where(CouponRedemption.order_id == order_id)
        )
    ).scalar_one_or_none()
    if redemption is None:
        return False
    result = await db.execute(
        delete(CouponRedemption)
        .where(CouponRedemption.id == redemption.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await db.execute(
        update(Coupon)
        .where(Coupon.id == redemption.coupon_id, Coupon.times_used > 0)
        .values(times_used=Coupon.times_used - 1)
        .execution_options(synchronize_session=False)
    )
    logger.info("Coupon %s use released by order %s", redemption.coupon_id, order_id)
    return True


# ============================================================================
# VENDOR OPERATIONS
# ============================================================================


def _ids(values) -> list[str]:
    return [str(v) for v in values]


async def create_coupon(
    db: AsyncSession, store_id: uuid.UUID, data: CouponCreate
) -> Coupon:
    if await get_coupon_by_code(db, store_id, data.code):
        raise ValidationError(f"Coupon {data.code} already exists", fields=["code"])

    coupon = Coupon(
        store_id=store_id,
        **data.model_dump(
            exclude={
                "applicable_product_ids",
                "applicable_category_ids",
                "excluded_product_ids",
            }
        ),
        applicable_product_ids=_ids(data.applicable_product_ids),
        applicable_category_ids=_ids(data.applicable_category_ids),
        excluded_product_ids=_ids(data.excluded_product_ids),
    )
    db.add(coupon)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ValidationError(f"Coupon {data.code} already exists", fields=["code"]) from exc
    return coupon


async def update_coupon(
    db: AsyncSession, coupon: Coupon, data: CouponUpdate
) -> Coupon:
    changes = data.model_dump(exclude_unset=True)
    for field in (
        "applicable_product_ids",
        "applicable_category_ids",
        "excluded_product_ids",
    ):
        if changes.get(field) is not None:
            changes[field] = _ids(changes[field])

    discount_type = changes.get("discount_type", coupon.discount_type)
    discount_value = changes.get("discount_value", coupon.discount_value)
    if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
        raise ValidationError(
            "Percentage discount cannot exceed 100", fields=["discount_value"]
        )
    starts_at = changes.get("starts_at", coupon.starts_at)
    ends_at = changes.get("ends_at", coupon.ends_at)
    if starts_at and ends_at and as_utc(ends_at) <= as_utc(starts_at):
        raise ValidationError("ends_at must be after starts_at", fields=["ends_at"])

    for field, value in changes.items():
        setattr(coupon, field, value)
    await db.flush()
    return coupon
