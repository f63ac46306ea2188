from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class InventoryError(HTTPException):
    """Base for every inventory failure surfaced to callers.

    Subclasses fix the status code and build a structured ``detail`` so that
    route handlers can let them propagate untouched.
    """

    code = "INVENTORY_ERROR"
    status = 500

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.status,
            detail={"code": self.code, "message": message, **context},
        )

    def __str__(self) -> str:
        return self.message


class ProductNotFoundError(InventoryError):
    code = "PRODUCT_NOT_FOUND"
    status = 404

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__("Product not found", productId=product_id)


class VariantNotFoundError(InventoryError):
    code = "VARIANT_NOT_FOUND"
    status = 404

    def __init__(
        self,
        product_id: str,
        *,
        variant_id: str | None = None,
        variant_label: str | None = None,
    ) -> None:
        self.product_id = product_id
        self.variant_id = variant_id
        self.variant_label = variant_label
        super().__init__(
            "Variant not found",
            productId=product_id,
            variantId=variant_id,
            variantLabel=variant_label,
        )


class ReservationNotFoundError(InventoryError):
    code = "RESERVATION_NOT_FOUND"
    status = 404

    def __init__(self, reservation_id: str) -> None:
        self.reservation_id = reservation_id
        super().__init__("Reservation not found", reservationId=reservation_id)


class InsufficientInventoryError(InventoryError):
    code = "INSUFFICIENT_INVENTORY"
    status = 400

    def __init__(
        self,
        *,
        product_id: str,
        variant_id: str | None,
        requested: int,
        available: int,
        message: str | None = None,
    ) -> None:
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            message or f"Cannot take {requested} items. Only {available} available",
            productId=product_id,
            variantId=variant_id,
            requested=requested,
            available=available,
        )


class LimitExceededError(InventoryError):
    code = "INVENTORY_LIMIT_EXCEEDED"
    status = 400

    def __init__(
        self,
        *,
        product_id: str,
        variant_id: str | None,
        current: int,
        adjustment: int,
        maximum: int,
    ) -> None:
        self.current = current
        self.adjustment = adjustment
        self.maximum = maximum
        super().__init__(
            f"Inventory limit exceeded. Maximum allowed: {maximum}",
            productId=product_id,
            variantId=variant_id,
            current=current,
            adjustment=adjustment,
            maximum=maximum,
        )


class InvalidQuantityError(InventoryError):
    code = "INVALID_QUANTITY"
    status = 400

    def __init__(self, quantity: int) -> None:
        self.quantity = quantity
        super().__init__("Quantity must be a positive integer", quantity=quantity)


class VersionConflictError(InventoryError):
    """Optimistic concurrency loss on a product document.

    Retried by the adjustment engine; only reaches callers once the retry
    budget is spent.
    """

    code = "VERSION_CONFLICT"
    status = 409

    def __init__(self, product_id: str, *, attempts: int | None = None) -> None:
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(
            "Product was modified concurrently",
            productId=product_id,
            attempts=attempts,
        )
