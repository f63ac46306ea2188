from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from stockroom.models.inventory import (
    DECREASE_ONLY_REASONS,
    INCREASE_ONLY_REASONS,
    MAX_ADJUSTMENT,
    AdjustmentReason,
)


class ReserveRequest(BaseModel):
    productId: str = Field(min_length=1)
    variantId: str | None = None
    variantLabel: str | None = None
    quantity: int = Field(ge=1)
    sessionId: str = Field(min_length=1)
    durationMs: int | None = Field(default=None, ge=1)


class ReleaseSessionRequest(BaseModel):
    sessionId: str = Field(min_length=1)


class ConvertReservationRequest(BaseModel):
    orderId: str = Field(min_length=1)


class InventoryAdjustmentRequest(BaseModel):
    productId: str = Field(min_length=1)
    variantId: str | None = None
    variantLabel: str | None = None
    adjustment: int = Field(ge=-MAX_ADJUSTMENT, le=MAX_ADJUSTMENT)
    reason: AdjustmentReason
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_direction(self) -> "InventoryAdjustmentRequest":
        if self.reason in DECREASE_ONLY_REASONS and self.adjustment > 0:
            raise ValueError(f"{self.reason.value} adjustments must be negative or zero")
        if self.reason in INCREASE_ONLY_REASONS and self.adjustment < 0:
            raise ValueError(f"{self.reason.value} adjustments must be positive or zero")
        return self


class BulkInventoryAdjustmentRequest(BaseModel):
    updates: list[InventoryAdjustmentRequest] = Field(min_length=1)


class CheckoutItem(BaseModel):
    productId: str = Field(min_length=1)
    variantId: str | None = None
    variantLabel: str | None = None
    quantity: int = Field(ge=1)


class ValidateCheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(min_length=1)

