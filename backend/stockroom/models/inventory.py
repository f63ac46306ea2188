from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from stockroom.core.utils import isoformat_or_none

MAX_INVENTORY = 999_999
MAX_ADJUSTMENT = 10_000
DEFAULT_LOW_STOCK_THRESHOLD = 5
DEFAULT_VARIANT_ID = "default"
DEFAULT_VARIANT_LABEL = "Default"


class AdjustmentReason(str, Enum):
    SALE = "sale"
    RETURN = "return"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"
    DAMAGE = "damage"
    THEFT = "theft"
    TRANSFER = "transfer"
    RESERVATION_EXPIRED = "reservation_expired"
    MANUAL_CORRECTION = "manual_correction"
    CORRECTION = "correction"


DECREASE_ONLY_REASONS = frozenset(
    {
        AdjustmentReason.SALE,
        AdjustmentReason.DAMAGE,
        AdjustmentReason.THEFT,
        AdjustmentReason.TRANSFER,
    }
)
INCREASE_ONLY_REASONS = frozenset({AdjustmentReason.RETURN, AdjustmentReason.RESTOCK})


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACKORDERED = "backordered"


def classify_stock_status(
    available: int, threshold: int, allow_backorder: bool = False
) -> StockStatus:
    if available <= 0:
        return StockStatus.BACKORDERED if allow_backorder else StockStatus.OUT_OF_STOCK
    if available <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass(frozen=True)
class StockSnapshot:
    product_id: str
    variant_id: str | None
    committed: int
    reserved: int

    @property
    def available(self) -> int:
        return max(0, self.committed - self.reserved)


@dataclass
class ReservationResult:
    success: bool
    available_stock: int
    reservation_id: str | None = None
    message: str | None = None
    expires_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "availableStock": self.available_stock,
        }
        if self.reservation_id is not None:
            payload["reservationId"] = self.reservation_id
            payload["expiresAt"] = isoformat_or_none(self.expires_at)
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass
class AdjustmentResult:
    success: bool
    previous_quantity: int
    new_quantity: int
    available_stock: int
    history_record: dict[str, Any]
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "success": self.success,
            "previousQuantity": self.previous_quantity,
            "newQuantity": self.new_quantity,
            "availableStock": self.available_stock,
            "historyRecord": history_payload(self.history_record),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def history_payload(record: dict[str, Any]) -> dict[str, Any]:
    payload = {key: value for key, value in record.items() if key != "_id"}
    timestamp = payload.get("timestamp")
    if isinstance(timestamp, datetime):
        payload["timestamp"] = isoformat_or_none(timestamp)
    return payload
