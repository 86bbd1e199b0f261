"""Typed errors raised by the commerce engine.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the API
layer can render it without inspecting the message.
"""

from typing import Any, Optional


class CommerceError(Exception):
    status_code = 400
    code = "COMMERCE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        fields: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.fields = fields or []
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "fields": self.fields,
            "details": self.details,
        }


class ValidationError(CommerceError):
    """Malformed or incomplete input."""

    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(CommerceError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(CommerceError):
    status_code = 403
    code = "FORBIDDEN"


class OutOfStockError(CommerceError):
    """Requested quantity exceeds stock at pricing time."""

    status_code = 409
    code = "OUT_OF_STOCK"


class InsufficientStockError(CommerceError):
    """Atomic decrement failed at confirmation time."""

    status_code = 409
    code = "INSUFFICIENT_STOCK"


class CouponIneligibleError(CommerceError):
    INVALID_CODE = "INVALID_CODE"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    CUSTOMER_LIMIT_REACHED = "CUSTOMER_LIMIT_REACHED"
    MIN_PURCHASE_NOT_MET = "MIN_PURCHASE_NOT_MET"
    NOT_FIRST_TIME_CUSTOMER = "NOT_FIRST_TIME_CUSTOMER"
    NOT_APPLICABLE = "NOT_APPLICABLE"

    status_code = 400

    def __init__(self, reason: str, message: str, **kwargs):
        super().__init__(message, code=reason, **kwargs)

    @property
    def reason(self) -> str:
        return self.code


class DifferentStoreConflictError(CommerceError):
    """Cart holds items from another store; the caller decides what to do."""

    status_code = 409
    code = "DIFFERENT_STORE"

    def __init__(self, current_cart: dict[str, Any], attempted_store: dict[str, Any]):
        super().__init__(
            f"Your cart has items from {current_cart['store_name']}. "
            "Clear the cart to shop from another store.",
            details={"current_cart": current_cart, "attempted_store": attempted_store},
        )
        self.current_cart = current_cart
        self.attempted_store = attempted_store


class PaymentFailedError(CommerceError):
    status_code = 402
    code = "PAYMENT_FAILED"


class PricingNotImplementedError(CommerceError, NotImplementedError):
    """Pricing rule that is declared but has no evaluator."""

    status_code = 501
    code = "NOT_IMPLEMENTED"
