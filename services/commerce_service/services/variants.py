"""Variant model: option axes, combination regeneration and selection lookup.

A product's purchasable combinations are always the full cross-product of
its active options grouped by axis. Combinations are keyed by a stable
string (``COLOR:red|SIZE:M``) so regeneration is an idempotent upsert.
Combinations that fall out of the cross-product are marked unavailable,
never deleted, because order items reference them.
"""

import itertools
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Sequence, Union

from libs.common.logging import get_logger
from services.commerce_service.errors import (
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from services.commerce_service.models import (
    Product,
    VariantAxis,
    VariantCombination,
    VariantOption,
)
from services.commerce_service.schemas import CombinationUpdate, VariantOptionInput
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_AXES = 3
KEY_SEPARATOR = "|"


@dataclass
class RegenerationResult:
    created: int
    archived: int
    combinations: list[VariantCombination]


@dataclass
class ResolvedVariant:
    """What a customer's selection resolves to.

    ``combination`` is None for products without axes; the product itself
    acts as the single default combination.
    """

    product: Product
    combination: Optional[VariantCombination]
    price: Decimal
    quantity: int
    inventory_tracked: bool

    @property
    def combination_id(self) -> Optional[uuid.UUID]:
        return self.combination.id if self.combination else None

    @property
    def combination_key(self) -> Optional[str]:
        return self.combination.combination_key if self.combination else None

    @property
    def label(self) -> Optional[str]:
        return self.combination.label if self.combination else None

    @property
    def sku(self) -> Optional[str]:
        return self.combination.sku if self.combination else None


def build_combination_key(option_values: Mapping[str, str]) -> str:
    """Deterministic key: axis-sorted ``AXIS:value`` pairs joined by ``|``."""
    return KEY_SEPARATOR.join(
        f"{axis}:{option_values[axis]}" for axis in sorted(option_values)
    )


def _axis_name(axis: Union[VariantAxis, str]) -> str:
    return axis.value if isinstance(axis, VariantAxis) else str(axis).upper()


async def get_options(
    db: AsyncSession, product_id: uuid.UUID, active_only: bool = False
) -> list[VariantOption]:
    query = select(VariantOption).where(VariantOption.product_id == product_id)
    if active_only:
        query = query.where(VariantOption.is_active.is_(True))
    result = await db.execute(
        query.order_by(VariantOption.axis, VariantOption.sort_order)
    )
    return list(result.scalars().all())


async def get_combinations(
    db: AsyncSession, product_id: uuid.UUID
) -> list[VariantCombination]:
    result = await db.execute(
        select(VariantCombination)
        .where(VariantCombination.product_id == product_id)
        .order_by(VariantCombination.sort_order)
    )
    return list(result.scalars().all())


async def active_axis_values(
    db: AsyncSession, product: Product
) -> dict[str, list[str]]:
    """Active option values per axis, in the product's axis order.

    Axes without any active value take no part in the cross-product.
    """
    grouped: dict[str, list[str]] = {}
    for option in await get_options(db, product.id, active_only=True):
        grouped.setdefault(option.axis.value, []).append(option.value)
    return {
        axis: grouped[axis] for axis in (product.variant_axes or []) if axis in grouped
    }


async def define_axis(
    db: AsyncSession,
    product: Product,
    axis: VariantAxis,
    values: Sequence[Union[str, VariantOptionInput]],
) -> RegenerationResult:
    """Replace the option set for one axis, then regenerate combinations.

    An empty ``values`` list removes the axis from the product.
    """
    options_in = [
        v if isinstance(v, VariantOptionInput) else VariantOptionInput(value=v)
        for v in values
    ]

    seen: set[str] = set()
    duplicates: list[str] = []
    for option in options_in:
        if option.value in seen and option.value not in duplicates:
            duplicates.append(option.value)
        seen.add(option.value)
    if duplicates:
        raise ValidationError(
            f"Duplicate values for {axis.value}: {', '.join(duplicates)}",
            fields=duplicates,
        )

    axes = list(product.variant_axes or [])
    if options_in and axis.value not in axes:
        max_axes = MAX_AXES if product.use_multi_variants else 1
        if len(axes) >= max_axes:
            raise ValidationError(
                f"A product can have at most {max_axes} variant axes",
                fields=["axis"],
            )
        axes.append(axis.value)
    elif not options_in and axis.value in axes:
        axes.remove(axis.value)
    # Reassign so the JSON column is flagged dirty
    product.variant_axes = axes

    existing = {
        o.value: o for o in await get_options(db, product.id) if o.axis == axis
    }
    for position, option_in in enumerate(options_in):
        option = existing.pop(option_in.value, None)
        if option is None:
            option = VariantOption(product_id=product.id, axis=axis, value=option_in.value)
            db.add(option)
        option.display_name = option_in.display_name or option_in.value
        option.hex_color = option_in.hex_color
        option.sort_order = position
        option.is_active = option_in.is_active

    # Options are plain definitions; combinations keep the history
    for stale in existing.values():
        await db.delete(stale)

    await db.flush()
    return await regenerate_combinations(db, product)


async def regenerate_combinations(
    db: AsyncSession, product: Product
) -> RegenerationResult:
    """Sync combinations with the cross-product of active options.

    Existing keys keep price, quantity and availability. New keys start with
    quantity 0 and available. Keys no longer producible are marked
    unavailable.
    """
    axis_values = await active_axis_values(db, product)
    existing = {c.combination_key: c for c in await get_combinations(db, product.id)}

    wanted: dict[str, dict[str, str]] = {}
    if axis_values:
        axes = list(axis_values)
        for values in itertools.product(*(axis_values[a] for a in axes)):
            option_values = dict(zip(axes, values))
            wanted[build_combination_key(option_values)] = option_values

    created = 0
    for position, (key, option_values) in enumerate(wanted.items()):
        combination = existing.get(key)
        if combination is None:
            combination = VariantCombination(
                product_id=product.id,
                combination_key=key,
                option_values=option_values,
                quantity=0,
                inventory_tracked=True,
                available=True,
                in_stock=False,
            )
            db.add(combination)
            existing[key] = combination
            created += 1
        else:
            combination.option_values = option_values
        combination.sort_order = position

    archived = 0
    for key, combination in existing.items():
        if key not in wanted and combination.available:
            combination.available = False
            archived += 1

    await db.flush()

    logger.info(
        "Regenerated combinations for product %s: %d wanted, %d created, %d archived",
        product.id,
        len(wanted),
        created,
        archived,
    )
    combinations = [existing[key] for key in wanted]
    return RegenerationResult(
        created=created, archived=archived, combinations=combinations
    )


async def resolve_selection(
    db: AsyncSession, product: Product, selection: Optional[Mapping[str, str]] = None
) -> ResolvedVariant:
    """Map a customer's per-axis choices to a purchasable combination.

    Raises NotFoundError when the selection is incomplete or maps to nothing
    available, OutOfStockError when stock is tracked and exhausted.
    """
    selection = {_axis_name(k): str(v).strip() for k, v in (selection or {}).items()}
    axis_values = await active_axis_values(db, product)

    if not axis_values:
        resolved = ResolvedVariant(
            product=product,
            combination=None,
            price=product.base_price,
            quantity=product.quantity,
            inventory_tracked=product.track_inventory,
        )
    else:
        missing = [axis for axis in axis_values if not selection.get(axis)]
        if missing:
            raise NotFoundError(
                f"Select a value for: {', '.join(missing)}", fields=missing
            )
        unknown = [axis for axis in selection if axis not in axis_values]
        if unknown:
            raise NotFoundError(
                f"{product.name} has no option {', '.join(unknown)}", fields=unknown
            )

        key = build_combination_key(selection)
        result = await db.execute(
            select(VariantCombination).where(
                VariantCombination.product_id == product.id,
                VariantCombination.combination_key == key,
            )
        )
        combination = result.scalar_one_or_none()
        if combination is None or not combination.available:
            raise NotFoundError(
                f"{product.name} is not available as {key}",
                details={"combination_key": key},
            )
        resolved = ResolvedVariant(
            product=product,
            combination=combination,
            price=combination.price
            if combination.price is not None
            else product.base_price,
            quantity=combination.quantity,
            inventory_tracked=product.track_inventory
            and combination.inventory_tracked,
        )

    if resolved.inventory_tracked and resolved.quantity <= 0:
        raise OutOfStockError(
            f"{product.name} is out of stock",
            details={
                "product_id": str(product.id),
                "combination_key": resolved.combination_key,
                "available": 0,
            },
        )
    return resolved


async def get_combination(
    db: AsyncSession, product: Product, combination_id: uuid.UUID
) -> VariantCombination:
    combination = await db.get(VariantCombination, combination_id)
    if combination is None or combination.product_id != product.id:
        raise NotFoundError("Combination not found")
    return combination


def apply_combination_update(
    combination: VariantCombination, update: CombinationUpdate
) -> dict[str, dict]:
    """Apply vendor edits except quantity. Returns ``{field: {old, new}}`` changes.

    Quantity changes go through the inventory module so they are ledgered.
    """
    changes: dict[str, dict] = {}

    def _set(field: str, value) -> None:
        old = getattr(combination, field)
        if old != value:
            changes[field] = {"old": old, "new": value}
            setattr(combination, field, value)

    if update.clear_price:
        _set("price", None)
    elif update.price is not None:
        _set("price", update.price)
    if update.compare_at_price is not None:
        _set("compare_at_price", update.compare_at_price)
    if update.available is not None:
        _set("available", update.available)
    if update.inventory_tracked is not None:
        _set("inventory_tracked", update.inventory_tracked)
    if update.sku is not None:
        _set("sku", update.sku)
    if update.image_url is not None:
        _set("image_url", update.image_url)
    return changes
