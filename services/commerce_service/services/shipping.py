"""Shipping rates: the flat checkout table and the ZIP-based quote."""

import re
from dataclasses import dataclass
from decimal import Decimal

from libs.common.money import round_money
from services.commerce_service.errors import ValidationError

ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")

FREE_SHIPPING_THRESHOLD = Decimal("50")
PRIORITY_THRESHOLD = Decimal("25")
ZONE_STEP = Decimal("0.15")


@dataclass(frozen=True)
class ShippingMethod:
    id: str
    name: str
    price: Decimal
    estimated_days: str


@dataclass(frozen=True)
class ShippingRate(ShippingMethod):
    carrier: str


SHIPPING_METHODS: dict[str, ShippingMethod] = {
    "standard": ShippingMethod(
        "standard", "Standard Shipping", Decimal("8.99"), "5-7 business days"
    ),
    "express": ShippingMethod(
        "express", "Express Shipping", Decimal("15.99"), "2-3 business days"
    ),
    "local_pickup": ShippingMethod(
        "local_pickup", "Local Pickup", Decimal("0.00"), "Available tomorrow"
    ),
}


def list_shipping_methods() -> list[ShippingMethod]:
    return list(SHIPPING_METHODS.values())


def get_shipping_method(method_id: str) -> ShippingMethod:
    method = SHIPPING_METHODS.get(method_id)
    if method is None:
        raise ValidationError(
            f"Unknown shipping method '{method_id}'", fields=["shipping_method"]
        )
    return method


def shipping_zone(zip_code: str) -> int:
    prefix = int(zip_code[:3])
    if 100 <= prefix <= 299:
        return 1  # Northeast
    if 300 <= prefix <= 399:
        return 2  # Southeast
    if 400 <= prefix <= 599:
        return 3  # Midwest
    if 600 <= prefix <= 799:
        return 4  # South/Central
    if 800 <= prefix <= 999:
        return 5  # West
    return 1


def quote_shipping(zip_code: str, cart_total: Decimal) -> tuple[int, list[ShippingRate]]:
    """Return ``(zone, rates)`` for a destination ZIP and cart total."""
    if not ZIP_PATTERN.match(zip_code or ""):
        raise ValidationError("Invalid ZIP code", fields=["zip_code"])

    zone = shipping_zone(zip_code)
    multiplier = 1 + (zone - 1) * ZONE_STEP

    rates: list[ShippingRate] = []
    if cart_total >= FREE_SHIPPING_THRESHOLD:
        rates.append(
            ShippingRate(
                "free_shipping",
                "Free Standard Shipping",
                Decimal("0.00"),
                "5-7 business days",
                "USPS",
            )
        )
    rates.append(
        ShippingRate(
            "standard",
            "Standard Shipping",
            round_money(Decimal("6.99") * multiplier),
            "5-7 business days",
            "USPS",
        )
    )
    rates.append(
        ShippingRate(
            "express",
            "Express Shipping",
            round_money(Decimal("12.99") * multiplier),
            "2-3 business days",
            "FedEx",
        )
    )
    if cart_total >= PRIORITY_THRESHOLD:
        rates.append(
            ShippingRate(
                "priority_overnight",
                "Priority Overnight",
                round_money(Decimal("24.99") * multiplier),
                "1 business day",
                "FedEx",
            )
        )
    rates.append(
        ShippingRate(
            "local_pickup",
            "Local Pickup",
            Decimal("0.00"),
            "Available tomorrow",
            "In-Store",
        )
    )
    return zone, rates
