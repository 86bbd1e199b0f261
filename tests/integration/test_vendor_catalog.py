"""Integration tests for vendor store, product, variant and addon endpoints."""

import pytest
from tests.factories import make_customer_user, make_vendor_user, override_auth


def _products_url(store) -> str:
    return f"/vendor/stores/{store.id}/products"


async def _create_product(client, store, **overrides):
    body = {
        "name": "Linen Apron",
        "slug": "linen-apron",
        "base_price": "40.00",
        "quantity": 0,
        "status": "active",
        **overrides,
    }
    response = await client.post(_products_url(store), json=body)
    assert response.status_code == 201, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_store(vendor_client):
    """POST /vendor/stores — caller becomes the owner."""
    response = await vendor_client.post(
        "/vendor/stores",
        json={"slug": "glaze-lab", "name": "Glaze Lab", "plan": "pro"},
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["owner_auth_id"] == "vendor-1"
    assert data["platform_fee_percent"] == 3

    mine = await vendor_client.get("/vendor/stores")
    assert [s["slug"] for s in mine.json()] == ["glaze-lab"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_store_duplicate_slug(vendor_client, store):
    """POST /vendor/stores — slug already taken."""
    response = await vendor_client.post(
        "/vendor/stores", json={"slug": "kiln-and-co", "name": "Copycat"}
    )

    assert response.status_code == 422
    assert response.json()["fields"] == ["slug"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_customers_cannot_use_vendor_routes(client, store):
    """GET /vendor/stores — vendor role required."""
    from services.commerce_service.app.main import app

    with override_auth(app, make_customer_user()):
        response = await client.get(f"/vendor/stores/{store.id}")

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_non_owner_is_forbidden(client, other_store):
    """GET /vendor/stores/{id}/products — another vendor's store."""
    from services.commerce_service.app.main import app

    with override_auth(app, make_vendor_user()):
        response = await client.get(_products_url(other_store))

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_service_role_may_manage_any_store(client, other_store):
    """GET /vendor/stores/{id} — service callers bypass ownership."""
    from services.commerce_service.app.main import app

    with override_auth(app, make_vendor_user("ops", role="service_role")):
        response = await client.get(f"/vendor/stores/{other_store.id}")

    assert response.status_code == 200, response.text


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_and_update_product(vendor_client, store):
    """POST/PATCH /vendor/stores/{id}/products — create then reprice."""
    product = await _create_product(vendor_client, store)
    assert product["variant_axes"] == []

    response = await vendor_client.patch(
        f"{_products_url(store)}/{product['id']}", json={"base_price": "42.50"}
    )

    assert response.status_code == 200, response.text
    assert response.json()["base_price"] == "42.50"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_duplicate_product_slug(vendor_client, store, mug):
    """POST /vendor/stores/{id}/products — slug unique per store."""
    response = await vendor_client.post(
        _products_url(store),
        json={"name": "Another Mug", "slug": "speckled-mug", "base_price": "10.00"},
    )

    assert response.status_code == 422
    assert response.json()["fields"] == ["slug"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_category_from_another_store_rejected(vendor_client, db_session, store, other_store):
    """POST /vendor/stores/{id}/products — category must belong to the store."""
    from tests.factories import CategoryFactory

    foreign = CategoryFactory.create(store_id=other_store.id)
    db_session.add(foreign)
    await db_session.commit()

    response = await vendor_client.post(
        _products_url(store),
        json={
            "name": "Bowl",
            "slug": "bowl",
            "base_price": "18.00",
            "category_id": str(foreign.id),
        },
    )

    assert response.status_code == 422
    assert response.json()["fields"] == ["category_id"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_archive_product(vendor_client, store, mug):
    """DELETE /vendor/stores/{id}/products/{id} — archived, not deleted."""
    response = await vendor_client.delete(f"{_products_url(store)}/{mug.id}")

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "archived"

    listed = await vendor_client.get(_products_url(store), params={"status": "archived"})
    assert [p["name"] for p in listed.json()] == ["Speckled Mug"]


# ---------------------------------------------------------------------------
# Variant axes & combinations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_define_axes_generates_combinations(vendor_client, store):
    """PUT /vendor/stores/{id}/products/{id}/axes/{axis} — cross product resync."""
    product = await _create_product(vendor_client, store)
    axes_url = f"{_products_url(store)}/{product['id']}/axes"

    sizes = await vendor_client.put(
        f"{axes_url}/SIZE",
        json={"values": [{"value": "S"}, {"value": "M"}, {"value": "L"}]},
    )
    assert sizes.status_code == 200, sizes.text
    assert sizes.json()["created"] == 3

    colors = await vendor_client.put(
        f"{axes_url}/COLOR",
        json={
            "values": [
                {"value": "red", "hex_color": "#cc0000"},
                {"value": "blue", "hex_color": "#0000cc"},
            ]
        },
    )

    assert colors.status_code == 200, colors.text
    data = colors.json()
    assert data["created"] == 6
    assert data["archived"] == 3
    keys = {c["combination_key"] for c in data["combinations"] if c["available"]}
    assert "COLOR:red|SIZE:S" in keys
    assert len(keys) == 6

    detail = await vendor_client.get(f"{_products_url(store)}/{product['id']}")
    assert detail.json()["variant_axes"] == ["SIZE", "COLOR"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_duplicate_axis_values_rejected(vendor_client, store):
    """PUT .../axes/{axis} — the same value twice."""
    product = await _create_product(vendor_client, store)

    response = await vendor_client.put(
        f"{_products_url(store)}/{product['id']}/axes/SIZE",
        json={"values": [{"value": "S"}, {"value": "S"}]},
    )

    assert response.status_code == 422
    assert response.json()["fields"] == ["S"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_update_combination_price_and_stock(vendor_client, store):
    """PATCH .../combinations/{id} — override price and set stock."""
    product = await _create_product(vendor_client, store)
    base = f"{_products_url(store)}/{product['id']}"
    await vendor_client.put(
        f"{base}/axes/SIZE", json={"values": [{"value": "S"}, {"value": "M"}]}
    )
    combos = (await vendor_client.get(f"{base}/combinations")).json()
    small = next(c for c in combos if c["combination_key"] == "SIZE:S")

    response = await vendor_client.patch(
        f"{base}/combinations/{small['id']}",
        json={"price": "45.00", "quantity": 7, "sku": "APR-S"},
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["price"] == "45.00"
    assert data["quantity"] == 7
    assert data["in_stock"] is True
    assert data["sku"] == "APR-S"

    cleared = await vendor_client.patch(
        f"{base}/combinations/{small['id']}", json={"clear_price": True}
    )
    assert cleared.json()["price"] is None


# ---------------------------------------------------------------------------
# Addons
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_select_addon(vendor_client, store, mug):
    """POST .../addons — select addon with priced options."""
    response = await vendor_client.post(
        f"{_products_url(store)}/{mug.id}/addons",
        json={
            "name": "Glaze",
            "field_type": "select",
            "is_required": True,
            "options": [
                {"label": "Matte", "value": "matte", "price": "0"},
                {"label": "Gold rim", "value": "gold", "price": "6.00"},
            ],
        },
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["field_type"] == "select"
    assert [o["value"] for o in data["options"]] == ["matte", "gold"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_formula_addons_rejected(vendor_client, store, mug):
    """POST .../addons — formula pricing is not accepted."""
    response = await vendor_client.post(
        f"{_products_url(store)}/{mug.id}/addons",
        json={"name": "Engraving", "field_type": "text", "price_type": "formula"},
    )

    assert response.status_code == 422
    assert "price_type" in response.json()["fields"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_choice_addon_needs_options(vendor_client, store, mug):
    """POST .../addons — radio without options."""
    response = await vendor_client.post(
        f"{_products_url(store)}/{mug.id}/addons",
        json={"name": "Size", "field_type": "radio"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_update_and_deactivate_addon(vendor_client, store, mug):
    """PATCH/DELETE .../addons/{id} — reprice, then hide from the storefront."""
    created = await vendor_client.post(
        f"{_products_url(store)}/{mug.id}/addons",
        json={"name": "Gift Box", "field_type": "checkbox", "price": "4.00"},
    )
    addon_url = f"{_products_url(store)}/{mug.id}/addons/{created.json()['id']}"

    updated = await vendor_client.patch(
        addon_url, json={"price_type": "percentage", "price": "10"}
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["price_type"] == "percentage"

    hidden = await vendor_client.delete(addon_url)
    assert hidden.json()["is_active"] is False

    page = await vendor_client.get("/store/stores/kiln-and-co/products/speckled-mug")
    assert page.json()["addons"] == []
