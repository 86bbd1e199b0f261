"""Cart line pricer.

Pure with respect to stock: pricing reads inventory to check availability
but never changes it.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from libs.common.money import round_money, sum_money
from services.commerce_service.errors import (
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from services.commerce_service.models import Product, ProductStatus
from services.commerce_service.services.addons import (
    AddonSelection,
    compute_addon_contribution,
    list_addons,
    validate_selections,
)
from services.commerce_service.services.variants import (
    ResolvedVariant,
    resolve_selection,
)
from sqlalchemy.ext.asyncio import AsyncSession

SELLABLE_STATUSES = (ProductStatus.ACTIVE, ProductStatus.OUT_OF_STOCK)


@dataclass
class PricedAddon:
    addon_id: uuid.UUID
    name: str
    value: Any
    quantity: int
    amount: Decimal

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "addon_id": str(self.addon_id),
            "name": self.name,
            "value": self.value,
            "quantity": self.quantity,
            "amount": str(self.amount),
        }


@dataclass
class PricedLine:
    product: Product
    variant: ResolvedVariant
    quantity: int
    base_price: Decimal
    unit_price: Decimal
    line_total: Decimal
    addons: list[PricedAddon] = field(default_factory=list)

    @property
    def product_id(self) -> uuid.UUID:
        return self.product.id

    @property
    def category_id(self) -> Optional[uuid.UUID]:
        return self.product.category_id

    @property
    def addon_total(self) -> Decimal:
        return sum_money(a.amount for a in self.addons)


async def get_sellable_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await db.get(Product, product_id)
    if product is None or product.status not in SELLABLE_STATUSES:
        raise NotFoundError("Product not found", details={"product_id": str(product_id)})
    return product


async def price_line(
    db: AsyncSession,
    product: Product,
    quantity: int,
    variant_selection: Optional[Mapping[str, str]] = None,
    addon_selections: Iterable[AddonSelection] = (),
    check_stock: bool = True,
) -> PricedLine:
    """Resolve, validate and price one cart line.

    unit price = (combination price override or base price) + addon contributions
    line total = unit price * quantity
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", fields=["quantity"])
    if product.status not in SELLABLE_STATUSES:
        raise NotFoundError(f"{product.name} is not for sale")

    variant = await resolve_selection(db, product, variant_selection)

    addons = await list_addons(db, product.id, active_only=True)
    chosen = validate_selections(addons, addon_selections, variant.combination_key)

    base_price = round_money(variant.price)
    priced_addons = [
        PricedAddon(
            addon_id=addon.id,
            name=addon.name,
            value=selection.value,
            quantity=selection.quantity,
            amount=compute_addon_contribution(addon, selection, base_price),
        )
        for addon, selection in chosen
    ]

    unit_price = round_money(base_price + sum(a.amount for a in priced_addons))
    line = PricedLine(
        product=product,
        variant=variant,
        quantity=quantity,
        base_price=base_price,
        unit_price=unit_price,
        line_total=round_money(unit_price * quantity),
        addons=priced_addons,
    )

    if check_stock and variant.inventory_tracked and variant.quantity < quantity:
        raise OutOfStockError(
            f"Only {variant.quantity} of {product.name} left in stock",
            details={
                "product_id": str(product.id),
                "combination_key": variant.combination_key,
                "available": variant.quantity,
                "requested": quantity,
            },
        )
    return line
