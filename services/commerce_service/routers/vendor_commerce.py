"""Vendor commerce router: coupons, inventory and orders."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import require_vendor
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.commerce_service.errors import NotFoundError
from services.commerce_service.models import (
    AuditEntityType,
    Coupon,
    Order,
    OrderStatus,
)
from services.commerce_service.routers._helpers import (
    get_owned_store,
    get_store_product,
    log_audit,
)
from services.commerce_service.schemas import (
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    LowStockItemResponse,
    OrderResponse,
    StockAdjustRequest,
    StockLevelResponse,
)
from services.commerce_service.services import checkout, coupons, inventory
from services.commerce_service.services.variants import get_combination
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

router = APIRouter(tags=["vendor-commerce"])


# ============================================================================
# COUPONS
# ============================================================================


async def _get_store_coupon(
    db: AsyncSession, store_id: uuid.UUID, coupon_id: uuid.UUID
) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None or coupon.store_id != store_id:
        raise NotFoundError("Coupon not found")
    return coupon


@router.get("/stores/{store_id}/coupons", response_model=list[CouponResponse])
async def list_coupons(
    store_id: uuid.UUID,
    active_only: bool = False,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    query = select(Coupon).where(Coupon.store_id == store.id)
    if active_only:
        query = query.where(Coupon.is_active.is_(True))
    result = await db.execute(query.order_by(Coupon.code))
    return result.scalars().all()


@router.post(
    "/stores/{store_id}/coupons",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_coupon(
    store_id: uuid.UUID,
    coupon_in: CouponCreate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a discount code. Codes are canonicalised to uppercase."""
    store = await get_owned_store(db, store_id, current_user)
    coupon = await coupons.create_coupon(db, store.id, coupon_in)
    await log_audit(
        db,
        store.id,
        AuditEntityType.COUPON,
        coupon.id,
        "created",
        current_user.user_id,
        new_value=coupon_in.model_dump(),
    )
    await db.commit()
    await db.refresh(coupon)
    return coupon


@router.patch("/stores/{store_id}/coupons/{coupon_id}", response_model=CouponResponse)
async def update_coupon(
    store_id: uuid.UUID,
    coupon_id: uuid.UUID,
    coupon_in: CouponUpdate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    coupon = await _get_store_coupon(db, store.id, coupon_id)

    update_data = coupon_in.model_dump(exclude_unset=True)
    old_values = {field: getattr(coupon, field) for field in update_data}
    coupon = await coupons.update_coupon(db, coupon, coupon_in)
    await log_audit(
        db,
        store.id,
        AuditEntityType.COUPON,
        coupon.id,
        "updated",
        current_user.user_id,
        old_value=old_values,
        new_value=update_data,
    )
    await db.commit()
    await db.refresh(coupon)
    return coupon


# ============================================================================
# INVENTORY
# ============================================================================


@router.post("/stores/{store_id}/inventory/adjust", response_model=StockLevelResponse)
async def adjust_inventory(
    store_id: uuid.UUID,
    adjustment: StockAdjustRequest,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Restock (positive) or correct (negative) a product or combination."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, adjustment.product_id)
    if adjustment.combination_id is not None:
        await get_combination(db, product, adjustment.combination_id)

    old_quantity = await inventory.current_quantity(
        db, product.id, adjustment.combination_id
    )
    new_quantity = await inventory.adjust_stock(
        db,
        store_id=store.id,
        product_id=product.id,
        combination_id=adjustment.combination_id,
        quantity_change=adjustment.quantity_change,
        performed_by=current_user.user_id,
        notes=adjustment.notes,
    )
    await log_audit(
        db,
        store.id,
        AuditEntityType.INVENTORY,
        adjustment.combination_id or product.id,
        "stock_adjusted",
        current_user.user_id,
        old_value={"quantity": old_quantity},
        new_value={"quantity": new_quantity},
        notes=adjustment.notes,
    )
    await db.commit()

    return StockLevelResponse(
        product_id=product.id,
        combination_id=adjustment.combination_id,
        quantity=new_quantity,
    )


@router.get(
    "/stores/{store_id}/inventory/low-stock",
    response_model=list[LowStockItemResponse],
)
async def get_low_stock_items(
    store_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Tracked products and combinations at or below their low-stock threshold."""
    store = await get_owned_store(db, store_id, current_user)
    items = await inventory.list_low_stock(db, store.id)
    return [LowStockItemResponse(**vars(item)) for item in items]


# ============================================================================
# ORDERS
# ============================================================================


async def _get_store_order(
    db: AsyncSession, store_id: uuid.UUID, order_id: uuid.UUID
) -> Order:
    order = await checkout.get_order(db, order_id)
    if order.store_id != store_id:
        raise NotFoundError("Order not found")
    return order


@router.get("/stores/{store_id}/orders", response_model=list[OrderResponse])
async def list_orders(
    store_id: uuid.UUID,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    query = (
        select(Order)
        .where(Order.store_id == store.id)
        .options(selectinload(Order.items))
    )
    if status_filter:
        query = query.where(Order.status == status_filter)
    result = await db.execute(
        query.order_by(Order.created_at.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/stores/{store_id}/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    store_id: uuid.UUID,
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    return await _get_store_order(db, store.id, order_id)


@router.post(
    "/stores/{store_id}/orders/{order_id}/collect-cash", response_model=OrderResponse
)
async def collect_cash(
    store_id: uuid.UUID,
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Record that a cash order was paid at pickup."""
    store = await get_owned_store(db, store_id, current_user)
    order = await _get_store_order(db, store.id, order_id)
    return await checkout.mark_cash_collected(db, order, current_user.user_id)


@router.post("/stores/{store_id}/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    store_id: uuid.UUID,
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel an unpaid or cash order; reserved stock goes back on the shelf."""
    store = await get_owned_store(db, store_id, current_user)
    order = await _get_store_order(db, store.id, order_id)
    old_status = order.status
    order = await checkout.cancel_order(db, order, current_user.user_id)
    await log_audit(
        db,
        store.id,
        AuditEntityType.ORDER,
        order.id,
        "cancelled",
        current_user.user_id,
        old_value={"status": old_status.value},
        new_value={"status": order.status.value},
    )
    await db.commit()
    return order


@router.post("/stores/{store_id}/orders/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    store_id: uuid.UUID,
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Refund a paid order through its gateway and release its stock."""
    store = await get_owned_store(db, store_id, current_user)
    order = await _get_store_order(db, store.id, order_id)
    old_status = order.status
    order = await checkout.refund_order(db, order, current_user.user_id)
    await log_audit(
        db,
        store.id,
        AuditEntityType.ORDER,
        order.id,
        "refunded",
        current_user.user_id,
        old_value={"status": old_status.value},
        new_value={"status": order.status.value},
    )
    await db.commit()
    return order
