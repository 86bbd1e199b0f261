"""Vendor catalog router: stores, categories, products, variant axes, addons."""

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from libs.auth.dependencies import require_vendor
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.commerce_service.errors import NotFoundError, ValidationError
from services.commerce_service.models import (
    AuditEntityType,
    Category,
    Product,
    ProductAddon,
    ProductStatus,
    Store,
    VariantAxis,
)
from services.commerce_service.routers._helpers import (
    get_owned_store,
    get_store_product,
    log_audit,
)
from services.commerce_service.schemas import (
    AddonResponse,
    AddonUpdate,
    AxisDefinition,
    CategoryCreate,
    CategoryResponse,
    CombinationResponse,
    CombinationUpdate,
    ProductCreate,
    ProductDetailResponse,
    ProductResponse,
    ProductUpdate,
    RegenerationResponse,
    StoreCreate,
    StoreResponse,
    VariantOptionResponse,
)
from services.commerce_service.services import addons as addon_service
from services.commerce_service.services import variants
from services.commerce_service.services.inventory import set_stock
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["vendor-catalog"])
logger = get_logger(__name__)


async def _product_detail(db: AsyncSession, product: Product) -> ProductDetailResponse:
    options = await variants.get_options(db, product.id)
    combinations = await variants.get_combinations(db, product.id)
    addons = await addon_service.list_addons(db, product.id)
    return ProductDetailResponse(
        **ProductResponse.model_validate(product).model_dump(),
        options=[VariantOptionResponse.model_validate(o) for o in options],
        combinations=[CombinationResponse.model_validate(c) for c in combinations],
        addons=[AddonResponse.model_validate(a) for a in addons],
    )


async def _get_addon(
    db: AsyncSession, product: Product, addon_id: uuid.UUID
) -> ProductAddon:
    addon = await db.get(ProductAddon, addon_id)
    if addon is None or addon.product_id != product.id:
        raise NotFoundError("Addon not found")
    return addon


# ============================================================================
# STORES
# ============================================================================


@router.post("/stores", response_model=StoreResponse, status_code=status.HTTP_201_CREATED)
async def create_store(
    store_in: StoreCreate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Open a new storefront owned by the caller."""
    existing = await db.execute(select(Store).where(Store.slug == store_in.slug))
    if existing.scalar_one_or_none():
        raise ValidationError("Store with this slug already exists", fields=["slug"])

    store = Store(owner_auth_id=current_user.user_id, **store_in.model_dump())
    db.add(store)
    await db.commit()
    await db.refresh(store)
    logger.info("Store %s created by %s", store.slug, current_user.user_id)
    return store


@router.get("/stores", response_model=list[StoreResponse])
async def list_my_stores(
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Stores the caller owns."""
    result = await db.execute(
        select(Store)
        .where(Store.owner_auth_id == current_user.user_id)
        .order_by(Store.name)
    )
    return result.scalars().all()


@router.get("/stores/{store_id}", response_model=StoreResponse)
async def get_store(
    store_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_owned_store(db, store_id, current_user)


# ============================================================================
# CATEGORIES
# ============================================================================


@router.get("/stores/{store_id}/categories", response_model=list[CategoryResponse])
async def list_categories(
    store_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    result = await db.execute(
        select(Category)
        .where(Category.store_id == store.id)
        .order_by(Category.sort_order, Category.name)
    )
    return result.scalars().all()


@router.post(
    "/stores/{store_id}/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    store_id: uuid.UUID,
    category_in: CategoryCreate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a category. Slugs are unique per store."""
    store = await get_owned_store(db, store_id, current_user)
    existing = await db.execute(
        select(Category).where(
            Category.store_id == store.id, Category.slug == category_in.slug
        )
    )
    if existing.scalar_one_or_none():
        raise ValidationError(
            "Category with this slug already exists", fields=["slug"]
        )

    category = Category(store_id=store.id, **category_in.model_dump())
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


# ============================================================================
# PRODUCTS
# ============================================================================


async def _check_category(
    db: AsyncSession, store: Store, category_id: Optional[uuid.UUID]
) -> None:
    if category_id is None:
        return
    category = await db.get(Category, category_id)
    if category is None or category.store_id != store.id:
        raise ValidationError("Unknown category", fields=["category_id"])


@router.get("/stores/{store_id}/products", response_model=list[ProductResponse])
async def list_products(
    store_id: uuid.UUID,
    status_filter: Optional[ProductStatus] = Query(None, alias="status"),
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """All of a store's products, archived included unless filtered."""
    store = await get_owned_store(db, store_id, current_user)
    query = select(Product).where(Product.store_id == store.id)
    if status_filter:
        query = query.where(Product.status == status_filter)
    result = await db.execute(query.order_by(Product.name))
    return result.scalars().all()


@router.post(
    "/stores/{store_id}/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_product(
    store_id: uuid.UUID,
    product_in: ProductCreate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    existing = await db.execute(
        select(Product).where(
            Product.store_id == store.id, Product.slug == product_in.slug
        )
    )
    if existing.scalar_one_or_none():
        raise ValidationError("Product with this slug already exists", fields=["slug"])
    await _check_category(db, store, product_in.category_id)

    product = Product(store_id=store.id, variant_axes=[], **product_in.model_dump())
    db.add(product)
    await db.flush()
    await log_audit(
        db,
        store.id,
        AuditEntityType.PRODUCT,
        product.id,
        "created",
        current_user.user_id,
        new_value=product_in.model_dump(),
    )
    await db.commit()
    await db.refresh(product)
    return product


@router.get(
    "/stores/{store_id}/products/{product_id}", response_model=ProductDetailResponse
)
async def get_product(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Product with every option, combination (archived included) and addon."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    return await _product_detail(db, product)


@router.patch("/stores/{store_id}/products/{product_id}", response_model=ProductResponse)
async def update_product(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    product_in: ProductUpdate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Edit product fields. Stock goes through the inventory endpoints."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)

    update_data = product_in.model_dump(exclude_unset=True)
    if "slug" in update_data and update_data["slug"] != product.slug:
        clash = await db.execute(
            select(Product).where(
                Product.store_id == store.id, Product.slug == update_data["slug"]
            )
        )
        if clash.scalar_one_or_none():
            raise ValidationError(
                "Product with this slug already exists", fields=["slug"]
            )
    if "category_id" in update_data:
        await _check_category(db, store, update_data["category_id"])

    old_values = {field: getattr(product, field) for field in update_data}
    for field, value in update_data.items():
        setattr(product, field, value)

    action = "price_changed" if "base_price" in update_data else "updated"
    await log_audit(
        db,
        store.id,
        AuditEntityType.PRODUCT,
        product.id,
        action,
        current_user.user_id,
        old_value=old_values,
        new_value=update_data,
    )
    await db.commit()
    await db.refresh(product)
    return product


@router.delete(
    "/stores/{store_id}/products/{product_id}", response_model=ProductResponse
)
async def archive_product(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Archive a product. Products are never deleted; orders reference them."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    old_status = product.status
    product.status = ProductStatus.ARCHIVED
    await log_audit(
        db,
        store.id,
        AuditEntityType.PRODUCT,
        product.id,
        "archived",
        current_user.user_id,
        old_value={"status": old_status.value},
        new_value={"status": ProductStatus.ARCHIVED.value},
    )
    await db.commit()
    await db.refresh(product)
    return product


# ============================================================================
# VARIANT AXES & COMBINATIONS
# ============================================================================


@router.put(
    "/stores/{store_id}/products/{product_id}/axes/{axis}",
    response_model=RegenerationResponse,
)
async def define_axis(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    axis: VariantAxis,
    axis_in: AxisDefinition,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Replace one axis's values and resync combinations. An empty list drops the axis."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)

    result = await variants.define_axis(db, product, axis, axis_in.values)
    await log_audit(
        db,
        store.id,
        AuditEntityType.PRODUCT,
        product.id,
        "axis_defined",
        current_user.user_id,
        new_value={
            "axis": axis.value,
            "values": [v.value for v in axis_in.values],
            "created": result.created,
            "archived": result.archived,
        },
    )
    await db.commit()
    return RegenerationResponse(
        created=result.created,
        archived=result.archived,
        total=len(result.combinations),
        combinations=[
            CombinationResponse.model_validate(c) for c in result.combinations
        ],
    )


@router.get(
    "/stores/{store_id}/products/{product_id}/combinations",
    response_model=list[CombinationResponse],
)
async def list_combinations(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    include_unavailable: bool = True,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    combinations = await variants.get_combinations(db, product.id)
    if not include_unavailable:
        combinations = [c for c in combinations if c.available]
    return combinations


@router.patch(
    "/stores/{store_id}/products/{product_id}/combinations/{combination_id}",
    response_model=CombinationResponse,
)
async def update_combination(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    combination_id: uuid.UUID,
    update_in: CombinationUpdate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Edit one combination: price override, stock, availability, SKU, image."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    combination = await variants.get_combination(db, product, combination_id)

    changes = variants.apply_combination_update(combination, update_in)
    await db.flush()

    if update_in.quantity is not None and update_in.quantity != combination.quantity:
        old_quantity = combination.quantity
        new_quantity = await set_stock(
            db,
            store_id=store.id,
            product_id=product.id,
            combination_id=combination.id,
            quantity=update_in.quantity,
            performed_by=current_user.user_id,
            notes="Combination edit",
        )
        changes["quantity"] = {"old": old_quantity, "new": new_quantity}

    if changes:
        await log_audit(
            db,
            store.id,
            AuditEntityType.COMBINATION,
            combination.id,
            "price_changed" if "price" in changes else "updated",
            current_user.user_id,
            old_value={field: change["old"] for field, change in changes.items()},
            new_value={field: change["new"] for field, change in changes.items()},
        )
    await db.commit()
    await db.refresh(combination)
    return combination


# ============================================================================
# ADDONS
# ============================================================================


@router.get(
    "/stores/{store_id}/products/{product_id}/addons",
    response_model=list[AddonResponse],
)
async def list_addons(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    return await addon_service.list_addons(db, product.id)


@router.post(
    "/stores/{store_id}/products/{product_id}/addons",
    response_model=AddonResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_addon(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    addon_in: dict[str, Any] = Body(...),
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Create an addon. The body shape depends on ``field_type``."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)

    definition = addon_service.parse_addon_definition(addon_in)
    addon = await addon_service.create_addon(db, product.id, definition)
    await db.commit()
    await db.refresh(addon)
    return addon


@router.patch(
    "/stores/{store_id}/products/{product_id}/addons/{addon_id}",
    response_model=AddonResponse,
)
async def update_addon(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    addon_id: uuid.UUID,
    update_in: AddonUpdate,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    addon = await _get_addon(db, product, addon_id)

    old_price = {"price_type": addon.price_type.value, "price": addon.price}
    addon = await addon_service.update_addon(db, addon, update_in)
    if update_in.price is not None or update_in.price_type is not None:
        await log_audit(
            db,
            store.id,
            AuditEntityType.PRODUCT,
            product.id,
            "addon_price_changed",
            current_user.user_id,
            old_value=old_price,
            new_value={"price_type": addon.price_type.value, "price": addon.price},
            notes=f"Addon {addon.name}",
        )
    await db.commit()
    await db.refresh(addon)
    return addon


@router.delete(
    "/stores/{store_id}/products/{product_id}/addons/{addon_id}",
    response_model=AddonResponse,
)
async def deactivate_addon(
    store_id: uuid.UUID,
    product_id: uuid.UUID,
    addon_id: uuid.UUID,
    current_user: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Hide an addon from the storefront. Order snapshots keep their copy."""
    store = await get_owned_store(db, store_id, current_user)
    product = await get_store_product(db, store, product_id)
    addon = await _get_addon(db, product, addon_id)
    addon.is_active = False
    await db.commit()
    await db.refresh(addon)
    return addon
