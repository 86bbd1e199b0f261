"""Addon model: selection validation and price contributions."""

import re
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Sequence

from libs.common.money import ZERO, percent_of, round_money, to_decimal
from pydantic import ValidationError as PydanticValidationError
from services.commerce_service.errors import (
    PricingNotImplementedError,
    ValidationError,
)
from services.commerce_service.models import (
    CHOICE_FIELD_TYPES,
    AddonFieldType,
    AddonPriceType,
    ProductAddon,
)
from services.commerce_service.schemas import (
    AddonDefinition,
    AddonUpdate,
    addon_definition_adapter,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
MAX_TEXT_LENGTH = 500


@dataclass
class AddonSelection:
    addon_id: uuid.UUID
    value: Any = None
    quantity: int = 1

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AddonSelection":
        return cls(
            addon_id=uuid.UUID(str(data["addon_id"])),
            value=data.get("value"),
            quantity=int(data.get("quantity") or 1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "addon_id": str(self.addon_id),
            "value": self.value,
            "quantity": self.quantity,
        }


def is_empty_value(value: Any) -> bool:
    return value is None or value is False or value == "" or value == []


def is_offered(addon: ProductAddon, combination_key: Optional[str]) -> bool:
    if not addon.is_active:
        return False
    return not (
        combination_key and combination_key in (addon.excluded_for_combinations or [])
    )


def is_required(addon: ProductAddon, combination_key: Optional[str]) -> bool:
    """A non-empty ``required_for_combinations`` list scopes the requirement."""
    if not is_offered(addon, combination_key):
        return False
    required_for = addon.required_for_combinations or []
    if required_for:
        return combination_key in required_for
    return addon.is_required


def _chosen_values(addon: ProductAddon, value: Any) -> list[str]:
    if addon.field_type == AddonFieldType.CHECKBOX and isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _option_prices(addon: ProductAddon) -> dict[str, Decimal]:
    return {
        str(option["value"]): to_decimal(str(option.get("price") or "0"))
        for option in addon.options or []
    }


def _value_problem(addon: ProductAddon, selection: AddonSelection) -> Optional[str]:
    """Describe what is wrong with a non-empty selection, or None."""
    value = selection.value
    field_type = addon.field_type

    if selection.quantity < 1:
        return "quantity must be at least 1"
    if selection.quantity > 1 and not addon.allow_multiple:
        return "only one allowed"
    if addon.max_quantity is not None and selection.quantity > addon.max_quantity:
        return f"at most {addon.max_quantity} allowed"

    if field_type == AddonFieldType.CHECKBOX and not addon.options:
        return None if value is True else "must be checked or omitted"

    if field_type in CHOICE_FIELD_TYPES:
        if field_type == AddonFieldType.CHECKBOX:
            if not isinstance(value, (list, str)):
                return "choose one or more options"
            chosen = _chosen_values(addon, value)
            if len(chosen) != len(set(chosen)):
                return "options chosen more than once"
        elif not isinstance(value, str):
            return "choose one option"
        else:
            chosen = [value]
        unknown = [v for v in chosen if v not in _option_prices(addon)]
        if unknown:
            return f"unknown option {', '.join(unknown)}"
        return None

    if field_type == AddonFieldType.NUMBER:
        if isinstance(value, bool):
            return "must be a number"
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return "must be a number"
        if not number.is_finite():
            return "must be a number"
        if addon.min_value is not None and number < addon.min_value:
            return f"must be at least {addon.min_value}"
        if addon.max_value is not None and number > addon.max_value:
            return f"must be at most {addon.max_value}"
        return None

    if not isinstance(value, str):
        return "must be text"
    if field_type == AddonFieldType.DATE:
        try:
            date.fromisoformat(value)
        except ValueError:
            return "must be a date (YYYY-MM-DD)"
    elif field_type == AddonFieldType.COLOR:
        if not HEX_COLOR_PATTERN.match(value):
            return "must be a hex color like #1a2b3c"
    elif len(value) > MAX_TEXT_LENGTH:
        return f"must be at most {MAX_TEXT_LENGTH} characters"
    return None


def validate_selections(
    addons: Sequence[ProductAddon],
    selections: Iterable[AddonSelection],
    combination_key: Optional[str] = None,
) -> list[tuple[ProductAddon, AddonSelection]]:
    """Check selections against the product's addons.

    Every problem (missing required addons included) is reported in one
    ValidationError whose ``fields`` lists the addon names involved.
    Returns the non-empty selections paired with their addon.
    """
    by_id = {addon.id: addon for addon in addons}
    chosen: dict[uuid.UUID, AddonSelection] = {}
    problems: list[tuple[str, str]] = []

    for selection in selections:
        addon = by_id.get(selection.addon_id)
        if addon is None or not addon.is_active:
            problems.append((str(selection.addon_id), "is not an option for this product"))
            continue
        if selection.addon_id in chosen:
            problems.append((addon.name, "selected more than once"))
            continue
        chosen[selection.addon_id] = selection
        if is_empty_value(selection.value):
            continue
        if not is_offered(addon, combination_key):
            problems.append((addon.name, "is not available for this variant"))
            continue
        problem = _value_problem(addon, selection)
        if problem:
            problems.append((addon.name, problem))

    missing = [
        addon.name
        for addon in addons
        if is_required(addon, combination_key)
        and is_empty_value(getattr(chosen.get(addon.id), "value", None))
    ]

    if missing or problems:
        parts = []
        if missing:
            parts.append(f"Missing required options: {', '.join(missing)}")
        parts.extend(f"{name} {problem}" for name, problem in problems)
        raise ValidationError(
            "; ".join(parts),
            fields=missing + [name for name, _ in problems],
            details={"missing": missing},
        )

    return [
        (by_id[addon_id], selection)
        for addon_id, selection in chosen.items()
        if not is_empty_value(selection.value)
    ]


def compute_addon_contribution(
    addon: ProductAddon, selection: AddonSelection, base_price: Decimal
) -> Decimal:
    """Price of one addon selection, rounded half-up to the cent.

    FIXED is the flat price; PERCENTAGE is ``base_price * price / 100``.
    Choice fields add each chosen option's own price. The result is
    multiplied by the selection quantity.
    """
    if addon.price_type == AddonPriceType.FORMULA:
        raise PricingNotImplementedError(
            f"Formula pricing for addon '{addon.name}' is not supported",
            details={"addon_id": str(addon.id)},
        )

    if addon.price_type == AddonPriceType.PERCENTAGE:
        amount = percent_of(base_price, addon.price)
    else:
        amount = round_money(addon.price)

    if addon.field_type in CHOICE_FIELD_TYPES and addon.options:
        option_prices = _option_prices(addon)
        for value in _chosen_values(addon, selection.value):
            amount += option_prices.get(value, ZERO)

    return round_money(amount * selection.quantity)


# ============================================================================
# VENDOR OPERATIONS
# ============================================================================


async def list_addons(
    db: AsyncSession, product_id: uuid.UUID, active_only: bool = False
) -> list[ProductAddon]:
    query = select(ProductAddon).where(ProductAddon.product_id == product_id)
    if active_only:
        query = query.where(ProductAddon.is_active.is_(True))
    result = await db.execute(query.order_by(ProductAddon.sort_order))
    return list(result.scalars().all())


def parse_addon_definition(data: Mapping[str, Any]) -> AddonDefinition:
    """Validate raw addon JSON against the schema for its ``field_type``."""
    try:
        return addon_definition_adapter.validate_python(dict(data))
    except PydanticValidationError as exc:
        # loc[0] is the union tag; the rest is the field path
        fields = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
        raise ValidationError(
            "; ".join(err["msg"] for err in exc.errors()),
            fields=[f for f in fields if f],
        ) from exc


def _addon_columns(definition: AddonDefinition) -> dict[str, Any]:
    data = definition.model_dump(mode="json")
    return {
        "name": definition.name,
        "description": definition.description,
        "field_type": AddonFieldType(definition.field_type),
        "price_type": AddonPriceType(definition.price_type),
        "price": definition.price,
        "is_required": definition.is_required,
        "allow_multiple": definition.allow_multiple,
        "max_quantity": definition.max_quantity,
        "options": data.get("options", []),
        "min_value": getattr(definition, "min_value", None),
        "max_value": getattr(definition, "max_value", None),
        "required_for_combinations": definition.required_for_combinations,
        "excluded_for_combinations": definition.excluded_for_combinations,
        "sort_order": definition.sort_order,
        "is_active": definition.is_active,
    }


async def create_addon(
    db: AsyncSession, product_id: uuid.UUID, definition: AddonDefinition
) -> ProductAddon:
    addon = ProductAddon(product_id=product_id, **_addon_columns(definition))
    db.add(addon)
    await db.flush()
    return addon


def _current_definition(addon: ProductAddon) -> dict[str, Any]:
    data = {
        "name": addon.name,
        "description": addon.description,
        "field_type": addon.field_type.value,
        "price_type": addon.price_type.value,
        "price": addon.price,
        "is_required": addon.is_required,
        "allow_multiple": addon.allow_multiple,
        "max_quantity": addon.max_quantity,
        "required_for_combinations": list(addon.required_for_combinations or []),
        "excluded_for_combinations": list(addon.excluded_for_combinations or []),
        "sort_order": addon.sort_order,
        "is_active": addon.is_active,
    }
    if addon.field_type in CHOICE_FIELD_TYPES:
        data["options"] = list(addon.options or [])
    if addon.field_type == AddonFieldType.NUMBER:
        data["min_value"] = addon.min_value
        data["max_value"] = addon.max_value
    return data


async def update_addon(
    db: AsyncSession, addon: ProductAddon, update: AddonUpdate
) -> ProductAddon:
    """Merge a partial update and re-validate the whole definition."""
    merged = _current_definition(addon)
    merged.update(update.model_dump(exclude_unset=True, mode="json"))

    field_type = merged["field_type"]
    if field_type not in {t.value for t in CHOICE_FIELD_TYPES}:
        merged.pop("options", None)
    if field_type != AddonFieldType.NUMBER.value:
        merged.pop("min_value", None)
        merged.pop("max_value", None)

    definition = parse_addon_definition(merged)
    for column, value in _addon_columns(definition).items():
        setattr(addon, column, value)
    await db.flush()
    return addon
