"""Unit tests for stock reservation, release and vendor adjustments."""

import asyncio
import uuid

import pytest
from services.commerce_service.errors import InsufficientStockError, ValidationError
from services.commerce_service.models import (
    InventoryMovement,
    InventoryMovementType,
    ProductStatus,
    VariantAxis,
)
from services.commerce_service.services.inventory import (
    adjust_stock,
    current_quantity,
    list_low_stock,
    release_on_cancel_or_refund,
    reserve_on_order_confirm,
    set_stock,
)
from sqlalchemy import select
from tests.factories import ProductFactory, seed_variant_product


async def _movements(db, product_id):
    result = await db.execute(
        select(InventoryMovement)
        .where(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Reservation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_checkouts_for_last_unit(db_session, session_factory, mug):
    """Two buyers race for one unit: exactly one wins, stock ends at zero."""
    mug.quantity = 1
    await db_session.commit()

    async def checkout() -> bool:
        async with session_factory() as session:
            try:
                await reserve_on_order_confirm(
                    session,
                    store_id=mug.store_id,
                    product_id=mug.id,
                    combination_id=None,
                    quantity=1,
                    order_id=uuid.uuid4(),
                )
            except InsufficientStockError:
                await session.rollback()
                return False
            await session.commit()
            return True

    outcomes = await asyncio.gather(checkout(), checkout())

    assert sorted(outcomes) == [False, True]
    assert await current_quantity(db_session, mug.id, None) == 0
    assert len(await _movements(db_session, mug.id)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_decrements_and_ledgers(db_session, mug):
    order_id = uuid.uuid4()

    await reserve_on_order_confirm(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity=3,
        order_id=order_id,
    )
    await db_session.commit()

    assert await current_quantity(db_session, mug.id, None) == 7
    [movement] = await _movements(db_session, mug.id)
    assert movement.movement_type == InventoryMovementType.SALE
    assert movement.quantity == -3
    assert movement.reference_type == "order"
    assert movement.reference_id == order_id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_stock_changes_nothing(db_session, mug):
    with pytest.raises(InsufficientStockError) as exc_info:
        await reserve_on_order_confirm(
            db_session,
            store_id=mug.store_id,
            product_id=mug.id,
            combination_id=None,
            quantity=11,
        )

    assert exc_info.value.details["requested"] == 11
    assert await current_quantity(db_session, mug.id, None) == 10
    assert await _movements(db_session, mug.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_selling_out_marks_plain_product_out_of_stock(db_session, mug):
    await reserve_on_order_confirm(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity=10,
    )
    await db_session.commit()
    await db_session.refresh(mug)
    assert mug.status == ProductStatus.OUT_OF_STOCK

    await release_on_cancel_or_refund(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity=2,
    )
    await db_session.commit()
    await db_session.refresh(mug)
    assert mug.status == ProductStatus.ACTIVE
    assert mug.quantity == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_combination_stock_is_separate(db_session, store):
    product, combos = await seed_variant_product(
        db_session, store, {VariantAxis.SIZE: ["S", "M"]}, quantity=2
    )
    small = combos["SIZE:S"]

    await reserve_on_order_confirm(
        db_session,
        store_id=store.id,
        product_id=product.id,
        combination_id=small.id,
        quantity=2,
    )
    await db_session.commit()
    await db_session.refresh(small)

    assert small.quantity == 0
    assert small.in_stock is False
    assert await current_quantity(db_session, product.id, combos["SIZE:M"].id) == 2

    with pytest.raises(InsufficientStockError):
        await reserve_on_order_confirm(
            db_session,
            store_id=store.id,
            product_id=product.id,
            combination_id=small.id,
            quantity=1,
        )


# ---------------------------------------------------------------------------
# Vendor adjustments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restock_and_correction_are_ledgered(db_session, mug):
    new_quantity = await adjust_stock(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity_change=5,
        performed_by="vendor-1",
        notes="Kiln batch 14",
    )
    assert new_quantity == 15

    new_quantity = await adjust_stock(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity_change=-4,
        performed_by="vendor-1",
        notes="Chipped",
    )
    await db_session.commit()
    assert new_quantity == 11

    movements = await _movements(db_session, mug.id)
    assert [(m.movement_type, m.quantity) for m in movements] == [
        (InventoryMovementType.RESTOCK, 5),
        (InventoryMovementType.ADJUSTMENT, -4),
    ]
    assert all(m.performed_by == "vendor-1" for m in movements)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_adjustment_cannot_go_negative(db_session, mug):
    with pytest.raises(ValidationError):
        await adjust_stock(
            db_session,
            store_id=mug.store_id,
            product_id=mug.id,
            combination_id=None,
            quantity_change=-11,
            performed_by="vendor-1",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_stock_records_the_delta(db_session, mug):
    assert (
        await set_stock(
            db_session,
            store_id=mug.store_id,
            product_id=mug.id,
            combination_id=None,
            quantity=4,
            performed_by="vendor-1",
        )
        == 4
    )
    # Same value again is a no-op
    await set_stock(
        db_session,
        store_id=mug.store_id,
        product_id=mug.id,
        combination_id=None,
        quantity=4,
        performed_by="vendor-1",
    )
    await db_session.commit()

    [movement] = await _movements(db_session, mug.id)
    assert movement.quantity == -6


# ---------------------------------------------------------------------------
# Low stock
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_low_stock_lists_products_and_combinations(
    db_session, store, other_store, mug
):
    mug.quantity = 3
    untracked = ProductFactory.create(
        store_id=store.id, quantity=0, track_inventory=False
    )
    elsewhere = ProductFactory.create(store_id=other_store.id, quantity=1)
    db_session.add_all([untracked, elsewhere])
    product, combos = await seed_variant_product(
        db_session,
        store,
        {VariantAxis.SIZE: ["S", "M"]},
        quantity=20,
        name="Apron",
    )
    combos["SIZE:S"].quantity = 2
    await db_session.commit()

    items = await list_low_stock(db_session, store.id)

    assert [(i.product_name, i.combination_key, i.quantity) for i in items] == [
        ("Apron", "SIZE:S", 2),
        (mug.name, None, 3),
    ]
    assert all(i.store_id == store.id for i in items)
    assert len(await list_low_stock(db_session)) == 3
