"""Storefront catalog router: stores, products and shipping quotes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.db.session import get_async_db
from services.commerce_service.errors import NotFoundError
from services.commerce_service.models import Category, Product
from services.commerce_service.routers._helpers import get_store_by_slug
from services.commerce_service.schemas import (
    AddonResponse,
    CategoryResponse,
    CombinationResponse,
    ProductDetailResponse,
    ProductResponse,
    ShippingMethodResponse,
    ShippingQuoteRequest,
    ShippingQuoteResponse,
    ShippingRateResponse,
    StoreResponse,
    VariantOptionResponse,
)
from services.commerce_service.services import shipping
from services.commerce_service.services.addons import list_addons
from services.commerce_service.services.pricing import SELLABLE_STATUSES
from services.commerce_service.services.variants import get_combinations, get_options
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["catalog"])


# ============================================================================
# STORES & PRODUCTS
# ============================================================================


@router.get("/stores/{store_slug}", response_model=StoreResponse)
async def get_store(store_slug: str, db: AsyncSession = Depends(get_async_db)):
    """Public store profile."""
    return await get_store_by_slug(db, store_slug)


@router.get("/stores/{store_slug}/categories", response_model=list[CategoryResponse])
async def list_store_categories(
    store_slug: str, db: AsyncSession = Depends(get_async_db)
):
    store = await get_store_by_slug(db, store_slug)
    result = await db.execute(
        select(Category)
        .where(Category.store_id == store.id)
        .order_by(Category.sort_order, Category.name)
    )
    return result.scalars().all()


@router.get("/stores/{store_slug}/products", response_model=list[ProductResponse])
async def list_store_products(
    store_slug: str,
    category: Optional[str] = Query(None, description="Category slug"),
    search: Optional[str] = Query(None, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_async_db),
):
    """List a store's sellable products."""
    store = await get_store_by_slug(db, store_slug)
    query = select(Product).where(
        Product.store_id == store.id, Product.status.in_(SELLABLE_STATUSES)
    )
    if category:
        query = query.join(Category, Product.category_id == Category.id).where(
            Category.slug == category
        )
    if search:
        query = query.where(Product.name.ilike(f"%{search}%"))
    result = await db.execute(
        query.order_by(Product.name).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get(
    "/stores/{store_slug}/products/{product_slug}",
    response_model=ProductDetailResponse,
)
async def get_store_product(
    store_slug: str, product_slug: str, db: AsyncSession = Depends(get_async_db)
):
    """Product page data: active options, available combinations, active addons."""
    store = await get_store_by_slug(db, store_slug)
    result = await db.execute(
        select(Product).where(
            Product.store_id == store.id,
            Product.slug == product_slug,
            Product.status.in_(SELLABLE_STATUSES),
        )
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise NotFoundError("Product not found")

    options = await get_options(db, product.id, active_only=True)
    combinations = [c for c in await get_combinations(db, product.id) if c.available]
    addons = await list_addons(db, product.id, active_only=True)

    return ProductDetailResponse(
        **ProductResponse.model_validate(product).model_dump(),
        options=[VariantOptionResponse.model_validate(o) for o in options],
        combinations=[CombinationResponse.model_validate(c) for c in combinations],
        addons=[AddonResponse.model_validate(a) for a in addons],
    )


# ============================================================================
# SHIPPING
# ============================================================================


@router.get("/shipping/methods", response_model=list[ShippingMethodResponse])
async def list_shipping_methods():
    """Flat-rate methods offered at checkout."""
    return [ShippingMethodResponse(**vars(m)) for m in shipping.list_shipping_methods()]


@router.post("/shipping/quote", response_model=ShippingQuoteResponse)
async def quote_shipping(body: ShippingQuoteRequest):
    """Zone-based carrier rates for a destination ZIP code."""
    zone, rates = shipping.quote_shipping(body.zip_code, body.cart_total)
    return ShippingQuoteResponse(
        zone=zone,
        free_shipping_eligible=body.cart_total >= shipping.FREE_SHIPPING_THRESHOLD,
        rates=[ShippingRateResponse(**vars(r)) for r in rates],
    )
