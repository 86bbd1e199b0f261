"""Unit tests for the variant model: axes, combination regeneration, selection lookup."""

from decimal import Decimal

import pytest
from services.commerce_service.errors import (
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from services.commerce_service.models import VariantAxis
from services.commerce_service.schemas import CombinationUpdate, VariantOptionInput
from services.commerce_service.services.variants import (
    apply_combination_update,
    build_combination_key,
    define_axis,
    get_combinations,
    regenerate_combinations,
    resolve_selection,
)
from tests.factories import ProductFactory, seed_variant_product


async def _new_product(db, store, **overrides):
    product = ProductFactory.create(store_id=store.id, quantity=0, **overrides)
    db.add(product)
    await db.commit()
    return product


# ---------------------------------------------------------------------------
# Combination keys
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_combination_key_is_axis_sorted():
    """Key order does not depend on the order axes were chosen in."""
    assert build_combination_key({"SIZE": "M", "COLOR": "red"}) == "COLOR:red|SIZE:M"
    assert build_combination_key({"COLOR": "red", "SIZE": "M"}) == "COLOR:red|SIZE:M"


# ---------------------------------------------------------------------------
# Regeneration
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_combinations_are_full_cross_product(db_session, store):
    """Two axes produce every SIZE x COLOR pair and nothing else."""
    product = await _new_product(db_session, store)

    await define_axis(db_session, product, VariantAxis.SIZE, ["S", "M", "L"])
    result = await define_axis(db_session, product, VariantAxis.COLOR, ["red", "blue"])

    keys = {c.combination_key for c in result.combinations}
    assert keys == {
        f"COLOR:{color}|SIZE:{size}"
        for size in ("S", "M", "L")
        for color in ("red", "blue")
    }
    assert result.created == 6
    # The single-axis combinations from the first definition no longer exist
    assert result.archived == 3
    assert all(c.quantity == 0 and c.available for c in result.combinations)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inactive_options_are_left_out(db_session, store):
    product = await _new_product(db_session, store)

    result = await define_axis(
        db_session,
        product,
        VariantAxis.SIZE,
        [
            VariantOptionInput(value="S"),
            VariantOptionInput(value="XL", is_active=False),
        ],
    )

    assert [c.combination_key for c in result.combinations] == ["SIZE:S"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_regeneration_is_idempotent(db_session, store):
    """Regenerating without option changes creates nothing and keeps edits."""
    product, combos = await seed_variant_product(
        db_session,
        store,
        {VariantAxis.SIZE: ["S", "M"], VariantAxis.COLOR: ["red"]},
        quantity=4,
    )
    edited = combos["COLOR:red|SIZE:M"]
    edited.price = Decimal("30.00")
    await db_session.commit()
    rows_before = len(await get_combinations(db_session, product.id))

    result = await regenerate_combinations(db_session, product)

    assert result.created == 0
    assert result.archived == 0
    assert len(await get_combinations(db_session, product.id)) == rows_before
    assert edited.price == Decimal("30.00")
    assert edited.quantity == 4
    assert edited.available is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shrinking_an_axis_archives_instead_of_deleting(db_session, store):
    product, combos = await seed_variant_product(
        db_session,
        store,
        {VariantAxis.SIZE: ["S", "M", "L"], VariantAxis.COLOR: ["red", "blue"]},
    )

    result = await define_axis(db_session, product, VariantAxis.SIZE, ["S", "M"])

    assert result.created == 0
    assert result.archived == 2
    assert combos["COLOR:red|SIZE:L"].available is False
    assert combos["COLOR:blue|SIZE:L"].available is False
    keys = {c.combination_key for c in await get_combinations(db_session, product.id)}
    assert "COLOR:red|SIZE:L" in keys


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_values_remove_the_axis(db_session, store):
    product, _ = await seed_variant_product(
        db_session,
        store,
        {VariantAxis.SIZE: ["S", "M"], VariantAxis.COLOR: ["red"]},
    )

    result = await define_axis(db_session, product, VariantAxis.COLOR, [])

    assert product.variant_axes == ["SIZE"]
    assert {c.combination_key for c in result.combinations} == {"SIZE:S", "SIZE:M"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_axis_value_rejected(db_session, store):
    product = await _new_product(db_session, store)

    with pytest.raises(ValidationError) as exc_info:
        await define_axis(db_session, product, VariantAxis.SIZE, ["S", "M", "S"])

    assert exc_info.value.fields == ["S"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_axis_count_is_capped(db_session, store):
    product = await _new_product(db_session, store)
    await define_axis(db_session, product, VariantAxis.SIZE, ["S"])
    await define_axis(db_session, product, VariantAxis.COLOR, ["red"])
    await define_axis(db_session, product, VariantAxis.MATERIAL, ["cotton"])

    with pytest.raises(ValidationError):
        await define_axis(db_session, product, VariantAxis.STYLE, ["slim"])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_single_variant_mode_allows_one_axis(db_session, store):
    product = await _new_product(db_session, store, use_multi_variants=False)
    await define_axis(db_session, product, VariantAxis.SIZE, ["S", "M"])

    with pytest.raises(ValidationError):
        await define_axis(db_session, product, VariantAxis.COLOR, ["red"])


# ---------------------------------------------------------------------------
# resolve_selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_without_axes_is_its_own_default_combination(db_session, mug):
    resolved = await resolve_selection(db_session, mug)

    assert resolved.combination is None
    assert resolved.price == Decimal("25.00")
    assert resolved.quantity == 10
    assert resolved.combination_key is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_falls_back_to_base_and_back_after_clearing(db_session, store):
    """Override a combination price, then clear it: base price applies again."""
    product, combos = await seed_variant_product(
        db_session,
        store,
        {VariantAxis.SIZE: ["S", "M"]},
        base_price=Decimal("20.00"),
    )
    selection = {"SIZE": "M"}

    resolved = await resolve_selection(db_session, product, selection)
    assert resolved.price == Decimal("20.00")

    changes = apply_combination_update(
        combos["SIZE:M"], CombinationUpdate(price=Decimal("24.50"))
    )
    assert changes["price"]["new"] == Decimal("24.50")
    resolved = await resolve_selection(db_session, product, selection)
    assert resolved.price == Decimal("24.50")

    apply_combination_update(combos["SIZE:M"], CombinationUpdate(clear_price=True))
    resolved = await resolve_selection(db_session, product, selection)
    assert resolved.price == Decimal("20.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_axis_names_are_case_insensitive(db_session, store):
    product, combos = await seed_variant_product(
        db_session, store, {VariantAxis.SIZE: ["S"], VariantAxis.COLOR: ["red"]}
    )

    resolved = await resolve_selection(db_session, product, {"size": "S", "color": "red"})

    assert resolved.combination is combos["COLOR:red|SIZE:S"]
    assert resolved.label == "S / red"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_incomplete_selection_not_found(db_session, store):
    product, _ = await seed_variant_product(
        db_session, store, {VariantAxis.SIZE: ["S"], VariantAxis.COLOR: ["red"]}
    )

    with pytest.raises(NotFoundError) as exc_info:
        await resolve_selection(db_session, product, {"SIZE": "S"})

    assert exc_info.value.fields == ["COLOR"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_value_not_found(db_session, store):
    product, _ = await seed_variant_product(db_session, store, {VariantAxis.SIZE: ["S"]})

    with pytest.raises(NotFoundError):
        await resolve_selection(db_session, product, {"SIZE": "XXL"})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_archived_combination_not_found(db_session, store):
    product, _ = await seed_variant_product(
        db_session, store, {VariantAxis.SIZE: ["S", "M"]}
    )
    await define_axis(db_session, product, VariantAxis.SIZE, ["S"])
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await resolve_selection(db_session, product, {"SIZE": "M"})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_exhausted_tracked_combination_out_of_stock(db_session, store):
    product, combos = await seed_variant_product(
        db_session, store, {VariantAxis.SIZE: ["S"]}, quantity=0
    )

    with pytest.raises(OutOfStockError):
        await resolve_selection(db_session, product, {"SIZE": "S"})

    combos["SIZE:S"].inventory_tracked = False
    resolved = await resolve_selection(db_session, product, {"SIZE": "S"})
    assert resolved.inventory_tracked is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_exhausted_product_without_axes_out_of_stock(db_session, store):
    product = await _new_product(db_session, store)

    with pytest.raises(OutOfStockError):
        await resolve_selection(db_session, product)
