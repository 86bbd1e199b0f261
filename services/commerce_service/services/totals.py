"""Order total assembler.

Order of operations is fixed:

1. subtotal            sum of line totals
2. shipping_cost       flat rate of the chosen method
3. discount            coupon discount on the subtotal (and shipping for FREE_SHIPPING)
4. taxable_base        subtotal - discount + (shipping_cost - shipping_discount)
5. tax                 taxable_base * tax_rate, rounded half-up
6. total               taxable_base + tax

Card and cash checkouts both go through ``assemble_totals``.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal

from libs.common.money import ZERO, percent_of, round_money
from services.commerce_service.models import PLAN_PLATFORM_FEE_PERCENT, StorePlan


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    shipping_discount: Decimal
    taxable_base: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


def assemble_totals(
    subtotal: Decimal,
    shipping_cost: Decimal,
    tax_rate: Decimal,
    discount: Decimal = ZERO,
    shipping_discount: Decimal = ZERO,
) -> OrderTotals:
    subtotal = round_money(subtotal)
    shipping_cost = round_money(shipping_cost)
    # A discount never takes a component below zero
    discount = min(round_money(discount), subtotal)
    shipping_discount = min(round_money(shipping_discount), shipping_cost)

    taxable_base = subtotal - discount + (shipping_cost - shipping_discount)
    tax = round_money(taxable_base * tax_rate)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        discount=discount,
        shipping_discount=shipping_discount,
        taxable_base=taxable_base,
        tax_rate=tax_rate,
        tax=tax,
        total=taxable_base + tax,
    )


def platform_fee_split(total: Decimal, plan: StorePlan) -> tuple[Decimal, Decimal]:
    """Return ``(platform_fee, vendor_payout)`` for an order total."""
    fee = percent_of(total, PLAN_PLATFORM_FEE_PERCENT[plan])
    return fee, round_money(total) - fee
