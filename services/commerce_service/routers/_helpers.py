"""Shared helper functions for commerce routers."""

import uuid
from typing import Optional

from fastapi.encoders import jsonable_encoder
from libs.auth.models import AuthUser
from services.commerce_service.errors import ForbiddenError, NotFoundError
from services.commerce_service.models import (
    AuditEntityType,
    Product,
    Store,
    StoreAuditLog,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

CART_SESSION_HEADER = "X-Cart-Session"


async def log_audit(
    db: AsyncSession,
    store_id: uuid.UUID,
    entity_type: AuditEntityType,
    entity_id: uuid.UUID,
    action: str,
    performed_by: str,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
    notes: Optional[str] = None,
):
    """Log an audit event."""
    audit_log = StoreAuditLog(
        store_id=store_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_value=jsonable_encoder(old_value) if old_value is not None else None,
        new_value=jsonable_encoder(new_value) if new_value is not None else None,
        performed_by=performed_by,
        notes=notes,
    )
    db.add(audit_log)


async def get_owned_store(
    db: AsyncSession, store_id: uuid.UUID, user: AuthUser
) -> Store:
    """Load a store the caller owns. Service-role callers may act on any store."""
    store = await db.get(Store, store_id)
    if store is None:
        raise NotFoundError("Store not found")
    if store.owner_auth_id != user.user_id and user.role != "service_role":
        raise ForbiddenError("You do not manage this store")
    return store


async def get_store_by_slug(db: AsyncSession, slug: str) -> Store:
    result = await db.execute(select(Store).where(Store.slug == slug))
    store = result.scalar_one_or_none()
    if store is None:
        raise NotFoundError("Store not found")
    return store


async def get_store_product(
    db: AsyncSession, store: Store, product_id: uuid.UUID
) -> Product:
    product = await db.get(Product, product_id)
    if product is None or product.store_id != store.id:
        raise NotFoundError("Product not found")
    return product
