"""Unit tests for the background tasks run by the ARQ worker."""

from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from services.commerce_service.models import CartStatus
from services.commerce_service.tasks import expire_carts, report_low_stock
from tests.factories import CartFactory, ProductFactory


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expire_carts_commits(db_session, session_factory):
    stale = CartFactory.create(expires_at=utc_now() - timedelta(days=1))
    db_session.add(stale)
    await db_session.commit()

    assert await expire_carts(db_session) == 1

    # Visible from another connection, so the task committed
    async with session_factory() as other:
        reloaded = await other.get(type(stale), stale.id)
        assert reloaded.status == CartStatus.EXPIRED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_low_stock_grouped_by_store(db_session, store, other_store, mug):
    mug.quantity = 2
    db_session.add(ProductFactory.create(store_id=other_store.id, quantity=0))
    db_session.add(ProductFactory.create(store_id=other_store.id, quantity=40))
    await db_session.commit()

    report = await report_low_stock(db_session)

    assert set(report) == {store.id, other_store.id}
    assert [item.product_name for item in report[store.id]] == ["Speckled Mug"]
    assert len(report[other_store.id]) == 1
