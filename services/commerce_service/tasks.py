"""Commerce background tasks: cart expiry and low-stock reporting."""

from collections import defaultdict

from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.commerce_service.services.carts import expire_stale_carts
from services.commerce_service.services.inventory import list_low_stock
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def expire_carts(db: AsyncSession) -> int:
    """Retire lapsed ACTIVE carts (EXPIRED, or ABANDONED with lines left)."""
    expired = await expire_stale_carts(db)
    await db.commit()
    if expired:
        logger.info("Expired %d stale carts", expired)
    return expired


async def report_low_stock(db: AsyncSession) -> dict:
    """Log low-stock products and combinations, grouped by store.

    Returns ``{store_id: [item, ...]}`` for callers that want the data.
    """
    by_store = defaultdict(list)
    for item in await list_low_stock(db):
        by_store[item.store_id].append(item)

    for store_id, items in by_store.items():
        logger.warning(
            "Store %s has %d low-stock items",
            store_id,
            len(items),
            extra={
                "extra_fields": {
                    "store_id": str(store_id),
                    "items": [
                        {
                            "product": item.product_name,
                            "combination": item.combination_key,
                            "quantity": item.quantity,
                        }
                        for item in items
                    ],
                }
            },
        )
    return dict(by_store)


async def run_expire_carts():
    async for db in get_async_db():
        await expire_carts(db)


async def run_report_low_stock():
    async for db in get_async_db():
        await report_low_stock(db)
