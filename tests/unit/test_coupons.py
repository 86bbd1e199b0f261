"""Unit tests for coupon eligibility, discounts and redemption."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from pydantic import ValidationError as SchemaValidationError
from services.commerce_service.errors import CouponIneligibleError, ValidationError
from services.commerce_service.models import CouponRedemption, DiscountType, OrderStatus
from services.commerce_service.schemas import CouponCreate, CouponUpdate
from services.commerce_service.services.coupons import (
    check_eligibility,
    compute_discount,
    create_coupon,
    normalize_code,
    redeem_coupon,
    resolve_coupon,
    update_coupon,
)
from services.commerce_service.services.pricing import PricedLine
from services.commerce_service.services.variants import ResolvedVariant
from sqlalchemy import func, select
from tests.factories import CouponFactory, OrderFactory, ProductFactory


def _line(product, total: str) -> PricedLine:
    amount = Decimal(total)
    variant = ResolvedVariant(
        product=product,
        combination=None,
        price=amount,
        quantity=product.quantity,
        inventory_tracked=True,
    )
    return PricedLine(
        product=product,
        variant=variant,
        quantity=1,
        base_price=amount,
        unit_price=amount,
        line_total=amount,
    )


def _reason(coupon, **kwargs) -> str:
    store_id = coupon.store_id if coupon is not None else uuid.uuid4()
    params = {
        "store_id": store_id,
        "lines": [_line(ProductFactory.create(store_id=store_id), "100.00")],
        "subtotal": Decimal("100.00"),
        "now": utc_now(),
    }
    params.update(kwargs)
    with pytest.raises(CouponIneligibleError) as exc_info:
        check_eligibility(coupon, **params)
    return exc_info.value.reason


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_first_failing_check_wins():
    """Expired, exhausted and under the minimum: the window is checked first."""
    coupon = CouponFactory.create(
        ends_at=utc_now() - timedelta(days=1),
        usage_limit=5,
        times_used=5,
        min_purchase_amount=Decimal("500"),
    )

    assert _reason(coupon) == CouponIneligibleError.EXPIRED


@pytest.mark.unit
def test_unknown_inactive_or_foreign_coupon_is_invalid():
    coupon = CouponFactory.create()

    assert _reason(None, store_id=coupon.store_id) == CouponIneligibleError.INVALID_CODE
    assert (
        _reason(coupon, store_id=uuid.uuid4()) == CouponIneligibleError.INVALID_CODE
    )
    coupon.is_active = False
    assert _reason(coupon) == CouponIneligibleError.INVALID_CODE


@pytest.mark.unit
def test_not_yet_started_is_expired():
    coupon = CouponFactory.create(starts_at=utc_now() + timedelta(hours=1))

    assert _reason(coupon) == CouponIneligibleError.EXPIRED


@pytest.mark.unit
def test_usage_limit_reached():
    coupon = CouponFactory.create(usage_limit=3, times_used=3)

    assert _reason(coupon) == CouponIneligibleError.USAGE_LIMIT_REACHED


@pytest.mark.unit
def test_customer_limit_only_checked_for_known_customers():
    coupon = CouponFactory.create(per_customer_limit=1)
    lines = [_line(ProductFactory.create(store_id=coupon.store_id), "100.00")]

    # Anonymous shopper: left for checkout
    check_eligibility(
        coupon,
        store_id=coupon.store_id,
        lines=lines,
        subtotal=Decimal("100.00"),
        now=utc_now(),
    )
    assert (
        _reason(coupon, customer_uses=1) == CouponIneligibleError.CUSTOMER_LIMIT_REACHED
    )


@pytest.mark.unit
def test_minimum_purchase():
    coupon = CouponFactory.create(min_purchase_amount=Decimal("150"))

    assert _reason(coupon) == CouponIneligibleError.MIN_PURCHASE_NOT_MET


@pytest.mark.unit
def test_first_time_customers_only():
    coupon = CouponFactory.create(first_time_customers_only=True)

    assert (
        _reason(coupon, prior_purchases=2) == CouponIneligibleError.NOT_FIRST_TIME_CUSTOMER
    )


@pytest.mark.unit
def test_not_applicable_to_cart_contents():
    store_id = uuid.uuid4()
    product = ProductFactory.create(store_id=store_id)
    other = ProductFactory.create(store_id=store_id)

    targeted = CouponFactory.create(
        store_id=store_id, applicable_product_ids=[str(other.id)]
    )
    assert (
        _reason(targeted, lines=[_line(product, "100.00")])
        == CouponIneligibleError.NOT_APPLICABLE
    )

    excluding = CouponFactory.create(
        store_id=store_id, excluded_product_ids=[str(product.id)]
    )
    assert (
        _reason(excluding, lines=[_line(product, "100.00")])
        == CouponIneligibleError.NOT_APPLICABLE
    )


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percentage_discount_capped():
    coupon = CouponFactory.create(
        discount_value=Decimal("20"), max_discount_amount=Decimal("15.00")
    )

    assert compute_discount(coupon, Decimal("50.00"), Decimal("6.99")) == (
        Decimal("10.00"),
        Decimal("0.00"),
    )
    assert compute_discount(coupon, Decimal("200.00"), Decimal("6.99")) == (
        Decimal("15.00"),
        Decimal("0.00"),
    )


@pytest.mark.unit
def test_fixed_amount_never_exceeds_eligible_subtotal():
    coupon = CouponFactory.create(
        discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal("30")
    )

    discount, _ = compute_discount(coupon, Decimal("18.50"), Decimal("0"))

    assert discount == Decimal("18.50")


@pytest.mark.unit
def test_free_shipping_discounts_shipping_only():
    coupon = CouponFactory.create(
        discount_type=DiscountType.FREE_SHIPPING, discount_value=Decimal("0")
    )

    assert compute_discount(coupon, Decimal("80.00"), Decimal("12.99")) == (
        Decimal("0.00"),
        Decimal("12.99"),
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_discounts_only_targeted_lines(db_session, store, mug):
    other = ProductFactory.create(store_id=store.id, base_price=Decimal("40.00"))
    coupon = CouponFactory.create(
        store_id=store.id,
        code="MUGS10",
        applicable_product_ids=[str(mug.id)],
    )
    db_session.add_all([other, coupon])
    await db_session.commit()
    lines = [_line(mug, "50.00"), _line(other, "40.00")]

    result = await resolve_coupon(
        db_session,
        store_id=store.id,
        code=" mugs10 ",
        lines=lines,
        subtotal=Decimal("90.00"),
    )

    assert result.coupon.id == coupon.id
    assert result.eligible_subtotal == Decimal("50.00")
    assert result.discount == Decimal("5.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_counts_customer_redemptions(db_session, store, mug):
    coupon = CouponFactory.create(store_id=store.id, code="ONCE", per_customer_limit=1)
    order = OrderFactory.create(store_id=store.id, customer_email="ana@test.com")
    db_session.add_all([coupon, order])
    await db_session.flush()
    await redeem_coupon(
        db_session, coupon_id=coupon.id, order=order, customer_key="ana@test.com"
    )
    await db_session.commit()

    with pytest.raises(CouponIneligibleError) as exc_info:
        await resolve_coupon(
            db_session,
            store_id=store.id,
            code="ONCE",
            lines=[_line(mug, "25.00")],
            subtotal=Decimal("25.00"),
            customer_key="ana@test.com",
        )

    assert exc_info.value.reason == CouponIneligibleError.CUSTOMER_LIMIT_REACHED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_time_check_uses_store_order_history(db_session, store, mug):
    coupon = CouponFactory.create(
        store_id=store.id, code="WELCOME", first_time_customers_only=True
    )
    past = OrderFactory.create(
        store_id=store.id, customer_email="Repeat@Test.com", status=OrderStatus.PAID
    )
    db_session.add_all([coupon, past])
    await db_session.commit()

    with pytest.raises(CouponIneligibleError) as exc_info:
        await resolve_coupon(
            db_session,
            store_id=store.id,
            code="WELCOME",
            lines=[_line(mug, "25.00")],
            subtotal=Decimal("25.00"),
            customer_key="repeat@test.com",
        )
    assert exc_info.value.reason == CouponIneligibleError.NOT_FIRST_TIME_CUSTOMER

    result = await resolve_coupon(
        db_session,
        store_id=store.id,
        code="WELCOME",
        lines=[_line(mug, "25.00")],
        subtotal=Decimal("25.00"),
        customer_key="new@test.com",
    )
    assert result.discount == Decimal("2.50")


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_last_use_can_only_be_redeemed_once(db_session, store):
    coupon = CouponFactory.create(store_id=store.id, usage_limit=1)
    first = OrderFactory.create(store_id=store.id)
    second = OrderFactory.create(store_id=store.id)
    db_session.add_all([coupon, first, second])
    await db_session.commit()

    await redeem_coupon(
        db_session, coupon_id=coupon.id, order=first, customer_key="a@test.com"
    )
    with pytest.raises(CouponIneligibleError) as exc_info:
        await redeem_coupon(
            db_session, coupon_id=coupon.id, order=second, customer_key="b@test.com"
        )
    await db_session.commit()

    assert exc_info.value.reason == CouponIneligibleError.USAGE_LIMIT_REACHED
    await db_session.refresh(coupon)
    assert coupon.times_used == 1


async def _redeem_in_own_session(session_factory, coupon_id, order) -> str:
    async with session_factory() as session:
        try:
            await redeem_coupon(
                session, coupon_id=coupon_id, order=order, customer_key="ana@test.com"
            )
        except CouponIneligibleError as exc:
            await session.rollback()
            return exc.reason
        await session.commit()
        return "redeemed"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_per_customer_limit_holds_under_concurrent_confirmations(
    db_session, session_factory, store
):
    coupon = CouponFactory.create(store_id=store.id, per_customer_limit=1)
    first = OrderFactory.create(store_id=store.id, customer_email="ana@test.com")
    second = OrderFactory.create(store_id=store.id, customer_email="ana@test.com")
    db_session.add_all([coupon, first, second])
    await db_session.commit()

    outcomes = await asyncio.gather(
        _redeem_in_own_session(session_factory, coupon.id, first),
        _redeem_in_own_session(session_factory, coupon.id, second),
    )

    assert sorted(outcomes) == sorted(
        ["redeemed", CouponIneligibleError.CUSTOMER_LIMIT_REACHED]
    )
    redemptions = await db_session.execute(
        select(func.count(CouponRedemption.id)).where(
            CouponRedemption.coupon_id == coupon.id
        )
    )
    assert redemptions.scalar_one() == 1
    await db_session.refresh(coupon)
    assert coupon.times_used == 1


# ---------------------------------------------------------------------------
# Vendor management
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_codes_are_normalized():
    assert normalize_code("  spring-25 ") == "SPRING-25"
    with pytest.raises(ValidationError):
        normalize_code("no spaces allowed")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_code_per_store_rejected(db_session, store, other_store):
    data = CouponCreate(
        code="summer", discount_type=DiscountType.PERCENTAGE, discount_value=10
    )
    await create_coupon(db_session, store.id, data)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await create_coupon(db_session, store.id, data)

    # Codes are unique per store, not globally
    other = await create_coupon(db_session, other_store.id, data)
    assert other.code == "SUMMER"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_keeps_percentage_within_bounds(db_session, store):
    coupon = CouponFactory.create(store_id=store.id)
    db_session.add(coupon)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await update_coupon(db_session, coupon, CouponUpdate(discount_value=150))

    updated = await update_coupon(
        db_session,
        coupon,
        CouponUpdate(discount_type=DiscountType.FIXED_AMOUNT, discount_value=150),
    )
    assert updated.discount_value == Decimal("150")


@pytest.mark.unit
def test_update_rejects_nulls_for_required_fields():
    for field in ("discount_value", "discount_type", "is_active", "excluded_product_ids"):
        with pytest.raises(SchemaValidationError):
            CouponUpdate(**{field: None})

    # Nullable limits can still be cleared
    assert CouponUpdate(usage_limit=None).model_dump(exclude_unset=True) == {
        "usage_limit": None
    }


@pytest.mark.unit
def test_window_compares_naive_and_aware_datetimes():
    with pytest.raises(SchemaValidationError):
        CouponCreate(
            code="WINDOW",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=10,
            starts_at=datetime(2026, 2, 1),
            ends_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    coupon = CouponCreate(
        code="WINDOW",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=10,
        starts_at=datetime(2026, 1, 1),
        ends_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )
    assert coupon.ends_at.tzinfo is timezone.utc
