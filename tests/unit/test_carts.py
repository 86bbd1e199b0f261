"""Unit tests for cart sessions: single-store rule, line merging, coupons, expiry."""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from libs.common.datetime_utils import utc_now
from services.commerce_service.errors import (
    CouponIneligibleError,
    DifferentStoreConflictError,
    OutOfStockError,
    ValidationError,
)
from services.commerce_service.models import CartStatus
from services.commerce_service.services.addons import AddonSelection
from services.commerce_service.services.carts import (
    add_item,
    apply_coupon,
    clear_cart,
    expire_stale_carts,
    get_or_create_cart,
    price_cart,
    remove_coupon,
    remove_item,
    update_item_quantity,
)
from tests.factories import AddonFactory, CartFactory, CouponFactory, ProductFactory


@pytest_asyncio.fixture
async def cart(db_session):
    cart = await get_or_create_cart(db_session, None)
    await db_session.commit()
    return cart


@pytest_asyncio.fixture
async def scarf(db_session, other_store):
    product = ProductFactory.create(
        store_id=other_store.id,
        name="Wool Scarf",
        slug="wool-scarf",
        base_price=Decimal("38.00"),
    )
    db_session.add(product)
    await db_session.commit()
    return product


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_existing_session_returns_same_cart(db_session, cart):
    again = await get_or_create_cart(db_session, cart.session_id, "customer-1")

    assert again.id == cart.id
    assert again.customer_auth_id == "customer-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_session_gets_a_fresh_id(db_session):
    cart = await get_or_create_cart(db_session, "made-up-session")

    assert cart.session_id != "made-up-session"
    assert cart.status == CartStatus.ACTIVE
    assert cart.items == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_lapsed_cart_is_expired_and_replaced(db_session, cart):
    cart.expires_at = utc_now() - timedelta(minutes=1)
    await db_session.commit()

    replacement = await get_or_create_cart(db_session, cart.session_id)

    assert replacement.id != cart.id
    assert cart.status == CartStatus.EXPIRED


# ---------------------------------------------------------------------------
# Single-store rule
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_other_store_item_is_a_conflict(db_session, cart, mug, scarf):
    await add_item(db_session, cart, product_id=mug.id, quantity=2)
    await db_session.commit()

    with pytest.raises(DifferentStoreConflictError) as exc_info:
        await add_item(db_session, cart, product_id=scarf.id, quantity=1)

    conflict = exc_info.value
    assert conflict.status_code == 409
    assert conflict.current_cart == {
        "store_slug": "kiln-and-co",
        "store_name": "Kiln & Co",
        "item_count": 2,
        "total": "50.00",
    }
    assert conflict.attempted_store == {
        "store_slug": "thread-house",
        "store_name": "Thread House",
    }
    assert len(cart.items) == 1
    assert cart.store_id == mug.store_id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_clearing_lets_the_cart_switch_store(db_session, cart, mug, scarf):
    await add_item(db_session, cart, product_id=mug.id, quantity=1)
    cart.coupon_code = "SAVE10"
    await db_session.commit()

    await clear_cart(db_session, cart)
    assert cart.store_id is None
    assert cart.coupon_code is None

    await add_item(db_session, cart, product_id=scarf.id, quantity=1)
    await db_session.commit()

    assert cart.store.slug == "thread-house"
    assert [item.product_id for item in cart.items] == [scarf.id]


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_identical_lines_merge_up_to_the_cap(db_session, cart, mug):
    first = await add_item(db_session, cart, product_id=mug.id, quantity=2)
    second = await add_item(db_session, cart, product_id=mug.id, quantity=3)
    assert second is first
    assert first.quantity == 5

    await add_item(db_session, cart, product_id=mug.id, quantity=8)

    assert len(cart.items) == 1
    assert first.quantity == 10


@pytest.mark.asyncio
@pytest.mark.unit
async def test_different_addons_make_separate_lines(db_session, cart, mug):
    wrap = AddonFactory.create(product_id=mug.id, name="Gift Wrap")
    db_session.add(wrap)
    await db_session.commit()

    await add_item(db_session, cart, product_id=mug.id, quantity=1)
    await add_item(
        db_session,
        cart,
        product_id=mug.id,
        quantity=1,
        addon_selections=[AddonSelection(wrap.id, True)],
    )
    await db_session.commit()

    summary = await price_cart(db_session, cart)
    assert sorted(line.priced.unit_price for line in summary.lines) == [
        Decimal("25.00"),
        Decimal("30.00"),
    ]
    assert summary.subtotal == Decimal("55.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quantity_outside_line_limits_rejected(db_session, cart, mug):
    with pytest.raises(ValidationError):
        await add_item(db_session, cart, product_id=mug.id, quantity=11)
    with pytest.raises(ValidationError):
        await add_item(db_session, cart, product_id=mug.id, quantity=0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_adding_more_than_stock_rejected(db_session, cart, mug):
    mug.quantity = 2
    await db_session.commit()

    with pytest.raises(OutOfStockError):
        await add_item(db_session, cart, product_id=mug.id, quantity=3)
    assert cart.items == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_zero_quantity_removes_line_and_resets_store(db_session, cart, mug):
    item = await add_item(db_session, cart, product_id=mug.id, quantity=2)
    await db_session.commit()

    updated = await update_item_quantity(db_session, cart, item.id, 4)
    assert updated.quantity == 4

    assert await update_item_quantity(db_session, cart, item.id, 0) is None
    assert cart.items == []
    assert cart.store_id is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_remove_item(db_session, cart, mug):
    item = await add_item(db_session, cart, product_id=mug.id, quantity=1)

    await remove_item(db_session, cart, item.id)

    assert cart.items == []


# ---------------------------------------------------------------------------
# Pricing and coupons
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cart_totals_with_coupon_and_shipping(db_session, cart, store, mug):
    db_session.add(CouponFactory.create(store_id=store.id, code="TENOFF"))
    await db_session.commit()
    await add_item(db_session, cart, product_id=mug.id, quantity=2)

    result = await apply_coupon(db_session, cart, "tenoff")
    await db_session.commit()
    assert cart.coupon_code == "TENOFF"
    assert result.discount == Decimal("5.00")

    summary = await price_cart(db_session, cart, shipping_method="standard")

    totals = summary.totals
    assert totals.subtotal == Decimal("50.00")
    assert totals.discount == Decimal("5.00")
    assert totals.shipping_cost == Decimal("8.99")
    # (50.00 - 5.00 + 8.99) * 0.0875 = 4.72
    assert totals.tax == Decimal("4.72")
    assert totals.total == Decimal("58.71")

    await remove_coupon(db_session, cart)
    summary = await price_cart(db_session, cart)
    assert summary.totals.discount == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_needs_items(db_session, cart, store):
    db_session.add(CouponFactory.create(store_id=store.id, code="TENOFF"))
    await db_session.commit()

    with pytest.raises(ValidationError):
        await apply_coupon(db_session, cart, "TENOFF")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_that_stops_applying_is_reported(db_session, cart, store, mug):
    db_session.add(
        CouponFactory.create(
            store_id=store.id, code="BIGSPEND", min_purchase_amount=Decimal("60")
        )
    )
    await db_session.commit()
    item = await add_item(db_session, cart, product_id=mug.id, quantity=3)
    await apply_coupon(db_session, cart, "BIGSPEND")
    await update_item_quantity(db_session, cart, item.id, 1)

    summary = await price_cart(db_session, cart)

    assert summary.coupon is None
    assert summary.coupon_error.reason == CouponIneligibleError.MIN_PURCHASE_NOT_MET
    assert summary.totals.discount == Decimal("0.00")

    with pytest.raises(CouponIneligibleError):
        await price_cart(db_session, cart, strict=True)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unbuyable_lines_are_left_out_of_totals(db_session, cart, mug):
    await add_item(db_session, cart, product_id=mug.id, quantity=4)
    mug.quantity = 2
    await db_session.commit()

    summary = await price_cart(db_session, cart)

    [line] = summary.lines
    assert not line.available
    assert isinstance(line.error, OutOfStockError)
    assert summary.totals.subtotal == Decimal("0.00")

    with pytest.raises(OutOfStockError):
        await price_cart(db_session, cart, strict=True)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_shipping_method_rejected(db_session, cart, mug):
    await add_item(db_session, cart, product_id=mug.id, quantity=1)

    with pytest.raises(ValidationError):
        await price_cart(db_session, cart, shipping_method="teleport")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expire_stale_carts(db_session):
    stale = CartFactory.create(expires_at=utc_now() - timedelta(hours=1))
    fresh = CartFactory.create()
    converted = CartFactory.create(
        status=CartStatus.CONVERTED, expires_at=utc_now() - timedelta(hours=1)
    )
    db_session.add_all([stale, fresh, converted])
    await db_session.commit()

    assert await expire_stale_carts(db_session) == 1
    await db_session.commit()

    for cart in (stale, fresh, converted):
        await db_session.refresh(cart)
    assert stale.status == CartStatus.EXPIRED
    assert fresh.status == CartStatus.ACTIVE
    assert converted.status == CartStatus.CONVERTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_lapsed_cart_with_lines_is_abandoned(db_session, cart, mug):
    await add_item(db_session, cart, product_id=mug.id, quantity=1)
    cart.expires_at = utc_now() - timedelta(minutes=5)
    empty = CartFactory.create(expires_at=utc_now() - timedelta(minutes=5))
    db_session.add(empty)
    await db_session.commit()
    cart_id, empty_id = cart.id, empty.id

    assert await expire_stale_carts(db_session) == 2
    await db_session.commit()

    db_session.expire_all()
    assert (await db_session.get(type(cart), cart_id)).status == CartStatus.ABANDONED
    assert (await db_session.get(type(cart), empty_id)).status == CartStatus.EXPIRED
