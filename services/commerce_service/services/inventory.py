"""Inventory reservation, release and vendor stock adjustments.

Every decrement is a single conditional UPDATE (``quantity >= :qty`` in the
WHERE clause) so concurrent checkouts serialize in the database and stock
never goes negative. Every change writes an InventoryMovement row.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.logging import get_logger
from services.commerce_service.errors import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from services.commerce_service.models import (
    InventoryMovement,
    InventoryMovementType,
    Product,
    ProductStatus,
    VariantCombination,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class LowStockItem:
    store_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    combination_id: Optional[uuid.UUID]
    combination_key: Optional[str]
    quantity: int
    threshold: int


async def _decrement(
    db: AsyncSession,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity: int,
) -> bool:
    if combination_id is not None:
        result = await db.execute(
            update(VariantCombination)
            .where(
                VariantCombination.id == combination_id,
                VariantCombination.product_id == product_id,
                VariantCombination.quantity >= quantity,
            )
            .values(
                quantity=VariantCombination.quantity - quantity,
                in_stock=(VariantCombination.quantity - quantity) > 0,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity >= quantity)
        .values(quantity=Product.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.quantity == 0,
            Product.status == ProductStatus.ACTIVE,
        )
        .values(status=ProductStatus.OUT_OF_STOCK)
        .execution_options(synchronize_session=False)
    )
    return True


async def _increment(
    db: AsyncSession,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity: int,
) -> None:
    if combination_id is not None:
        await db.execute(
            update(VariantCombination)
            .where(VariantCombination.id == combination_id)
            .values(
                quantity=VariantCombination.quantity + quantity,
                in_stock=(VariantCombination.quantity + quantity) > 0,
            )
            .execution_options(synchronize_session=False)
        )
        return

    await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.quantity > 0,
            Product.status == ProductStatus.OUT_OF_STOCK,
        )
        .values(status=ProductStatus.ACTIVE)
        .execution_options(synchronize_session=False)
    )


def _record(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    movement_type: InventoryMovementType,
    quantity: int,
    reference_type: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
) -> None:
    db.add(
        InventoryMovement(
            store_id=store_id,
            product_id=product_id,
            combination_id=combination_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            performed_by=performed_by,
        )
    )


async def reserve_on_order_confirm(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity: int,
    order_id: Optional[uuid.UUID] = None,
) -> None:
    """Atomically take ``quantity`` units out of stock.

    Raises InsufficientStockError (and changes nothing) when fewer remain.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", fields=["quantity"])

    if not await _decrement(db, product_id, combination_id, quantity):
        logger.warning(
            "Insufficient stock for product %s combination %s (wanted %d)",
            product_id,
            combination_id,
            quantity,
        )
        raise InsufficientStockError(
            "Not enough stock left to complete this order",
            details={
                "product_id": str(product_id),
                "combination_id": str(combination_id) if combination_id else None,
                "requested": quantity,
            },
        )

    _record(
        db,
        store_id=store_id,
        product_id=product_id,
        combination_id=combination_id,
        movement_type=InventoryMovementType.SALE,
        quantity=-quantity,
        reference_type="order" if order_id else None,
        reference_id=order_id,
    )
    await db.flush()


async def release_on_cancel_or_refund(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity: int,
    order_id: Optional[uuid.UUID] = None,
) -> None:
    """Put units back into stock. Always succeeds."""
    await _increment(db, product_id, combination_id, quantity)
    _record(
        db,
        store_id=store_id,
        product_id=product_id,
        combination_id=combination_id,
        movement_type=InventoryMovementType.RELEASE,
        quantity=quantity,
        reference_type="order" if order_id else None,
        reference_id=order_id,
    )
    await db.flush()


async def current_quantity(
    db: AsyncSession, product_id: uuid.UUID, combination_id: Optional[uuid.UUID]
) -> int:
    if combination_id is not None:
        query = select(VariantCombination.quantity).where(
            VariantCombination.id == combination_id,
            VariantCombination.product_id == product_id,
        )
    else:
        query = select(Product.quantity).where(Product.id == product_id)
    quantity = (await db.execute(query)).scalar_one_or_none()
    if quantity is None:
        raise NotFoundError("Stock item not found")
    return quantity


async def adjust_stock(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity_change: int,
    performed_by: str,
    notes: Optional[str] = None,
) -> int:
    """Vendor restock (positive) or correction (either sign). Returns the new quantity."""
    if quantity_change < 0:
        if not await _decrement(db, product_id, combination_id, -quantity_change):
            raise ValidationError(
                "Adjustment would make stock negative", fields=["quantity_change"]
            )
        movement_type = InventoryMovementType.ADJUSTMENT
    else:
        await _increment(db, product_id, combination_id, quantity_change)
        movement_type = InventoryMovementType.RESTOCK

    _record(
        db,
        store_id=store_id,
        product_id=product_id,
        combination_id=combination_id,
        movement_type=movement_type,
        quantity=quantity_change,
        reference_type="manual",
        notes=notes,
        performed_by=performed_by,
    )
    await db.flush()
    return await current_quantity(db, product_id, combination_id)


async def set_stock(
    db: AsyncSession,
    *,
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: Optional[uuid.UUID],
    quantity: int,
    performed_by: str,
    notes: Optional[str] = None,
) -> int:
    """Set an absolute quantity (bulk combination edit), ledgered as the delta."""
    current = await current_quantity(db, product_id, combination_id)
    if quantity == current:
        return current
    return await adjust_stock(
        db,
        store_id=store_id,
        product_id=product_id,
        combination_id=combination_id,
        quantity_change=quantity - current,
        performed_by=performed_by,
        notes=notes,
    )


async def list_low_stock(
    db: AsyncSession, store_id: Optional[uuid.UUID] = None
) -> list[LowStockItem]:
    """Tracked stock at or below its product's threshold.

    Products without axes are checked directly; products with axes are
    checked per available combination.
    """
    product_query = select(Product).where(
        Product.track_inventory.is_(True),
        Product.status.in_([ProductStatus.ACTIVE, ProductStatus.OUT_OF_STOCK]),
    )
    if store_id is not None:
        product_query = product_query.where(Product.store_id == store_id)
    products = list((await db.execute(product_query)).scalars().all())

    items: list[LowStockItem] = []
    combo_products = {p.id: p for p in products if p.variant_axes}
    for product in products:
        if product.variant_axes:
            continue
        if product.quantity <= product.low_stock_threshold:
            items.append(
                LowStockItem(
                    store_id=product.store_id,
                    product_id=product.id,
                    product_name=product.name,
                    combination_id=None,
                    combination_key=None,
                    quantity=product.quantity,
                    threshold=product.low_stock_threshold,
                )
            )

    if combo_products:
        result = await db.execute(
            select(VariantCombination).where(
                VariantCombination.product_id.in_(list(combo_products)),
                VariantCombination.available.is_(True),
                VariantCombination.inventory_tracked.is_(True),
            )
        )
        for combination in result.scalars().all():
            product = combo_products[combination.product_id]
            if combination.quantity <= product.low_stock_threshold:
                items.append(
                    LowStockItem(
                        store_id=product.store_id,
                        product_id=product.id,
                        product_name=product.name,
                        combination_id=combination.id,
                        combination_key=combination.combination_key,
                        quantity=combination.quantity,
                        threshold=product.low_stock_threshold,
                    )
                )

    items.sort(key=lambda item: (item.quantity, item.product_name))
    return items
