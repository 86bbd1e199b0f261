"""Shared catalog fixtures for commerce tests."""

from decimal import Decimal

import pytest
import pytest_asyncio
from tests.factories import (
    ProductFactory,
    StoreFactory,
    make_customer_user,
    make_vendor_user,
    override_auth,
)


@pytest.fixture
def vendor_user():
    return make_vendor_user()


@pytest.fixture
def customer_user():
    return make_customer_user()


@pytest_asyncio.fixture
async def store(db_session):
    """A cash-accepting store on the trial plan, owned by ``vendor-1``."""
    store = StoreFactory.create(slug="kiln-and-co", name="Kiln & Co")
    db_session.add(store)
    await db_session.commit()
    return store


@pytest_asyncio.fixture
async def other_store(db_session):
    store = StoreFactory.create(
        slug="thread-house", name="Thread House", owner_auth_id="vendor-2"
    )
    db_session.add(store)
    await db_session.commit()
    return store


@pytest_asyncio.fixture
async def mug(db_session, store):
    """Axis-less product: $25.00, 10 in stock."""
    product = ProductFactory.create(
        store_id=store.id,
        name="Speckled Mug",
        slug="speckled-mug",
        base_price=Decimal("25.00"),
        quantity=10,
    )
    db_session.add(product)
    await db_session.commit()
    return product


@pytest_asyncio.fixture
async def vendor_client(client, vendor_user):
    """HTTP client authenticated as the store owner."""
    from services.commerce_service.app.main import app

    with override_auth(app, vendor_user):
        yield client
