from __future__ import annotations

from datetime import datetime
from typing import Any

from stockroom.core.utils import isoformat_or_none
from stockroom.models.inventory import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    AdjustmentReason,
    AdjustmentResult,
    ReservationResult,
    classify_stock_status,
    history_payload,
)
from stockroom.repositories.history_repository import HistoryRepository
from stockroom.services.adjustment_service import AdjustmentService
from stockroom.services.analytics_service import AnalyticsService
from stockroom.services.cache_service import (
    PRODUCT_INVENTORY_TTL_SECONDS,
    CacheService,
    product_inventory_key,
)
from stockroom.services.reservation_service import ReservationService
from stockroom.services.stock_query_service import StockQueryService
from stockroom.services.variants import format_variant_details, resolve_stock_target


class InventoryService:
    """Single entry point composing query, reservation, adjustment and analytics."""

    def __init__(
        self,
        *,
        stock_query: StockQueryService,
        reservation_service: ReservationService,
        adjustment_service: AdjustmentService,
        analytics_service: AnalyticsService,
        history_repository: HistoryRepository,
        cache_service: CacheService,
    ) -> None:
        self.stock_query = stock_query
        self.reservation_service = reservation_service
        self.adjustment_service = adjustment_service
        self.analytics_service = analytics_service
        self.history_repository = history_repository
        self.cache_service = cache_service

    async def check_availability(
        self,
        product_id: str,
        variant_id: str | None = None,
        quantity: int = 1,
        variant_label: str | None = None,
    ) -> bool:
        return await self.stock_query.check_availability(
            product_id, variant_id, quantity, variant_label
        )

    async def get_available_inventory(
        self, product_id: str, variant_id: str | None = None, variant_label: str | None = None
    ) -> int:
        return await self.stock_query.get_available_inventory(product_id, variant_id, variant_label)

    async def reserve(
        self,
        product_id: str,
        variant_id: str | None,
        quantity: int,
        session_id: str,
        duration_ms: int | None = None,
        user_id: str | None = None,
        variant_label: str | None = None,
    ) -> ReservationResult:
        return await self.reservation_service.reserve(
            product_id, variant_id, quantity, session_id, duration_ms, user_id, variant_label
        )

    async def release(self, reservation_id: str) -> bool:
        return await self.reservation_service.release(reservation_id)

    async def release_all(self, session_id: str) -> int:
        return await self.reservation_service.release_all(session_id)

    async def convert_to_permanent(self, reservation_id: str, order_id: str) -> AdjustmentResult:
        return await self.reservation_service.convert_to_permanent(reservation_id, order_id)

    async def adjust(
        self,
        product_id: str,
        variant_id: str | None,
        delta: int,
        reason: AdjustmentReason | str,
        user_id: str,
        metadata: dict[str, Any] | None = None,
        variant_label: str | None = None,
    ) -> AdjustmentResult:
        return await self.adjustment_service.adjust(
            product_id, variant_id, delta, reason, user_id, metadata, variant_label
        )

    async def bulk_adjust(self, updates: list[dict[str, Any]], user_id: str) -> list[AdjustmentResult]:
        return await self.adjustment_service.bulk_adjust(updates, user_id)

    async def get_product_inventory_info(
        self,
        product_id: str,
        variant_id: str | None = None,
        variant_label: str | None = None,
    ) -> dict[str, Any]:
        key = product_inventory_key(product_id, variant_id, variant_label)
        cached = await self.cache_service.get(key)
        if cached is not None:
            return cached

        target = await self.stock_query.resolve_target(
            product_id, variant_id=variant_id, variant_label=variant_label
        )
        snapshot = await self.stock_query.snapshot_for(target)
        product = target.product
        threshold = int(product.get("lowStockThreshold", DEFAULT_LOW_STOCK_THRESHOLD))
        allow_backorder = bool(product.get("allowBackorder", False))
        restock_date = product.get("restockDate")
        info = {
            "productId": product_id,
            "variantId": target.variant_id,
            "variantLabel": target.variant_label,
            "currentStock": snapshot.committed,
            "reservedStock": snapshot.reserved,
            "availableStock": snapshot.available,
            "lowStockThreshold": threshold,
            "allowBackorder": allow_backorder,
            "restockDate": (
                isoformat_or_none(restock_date) if isinstance(restock_date, datetime) else restock_date
            ),
            "stockStatus": classify_stock_status(snapshot.available, threshold, allow_backorder).value,
        }
        await self.cache_service.set(key, info, PRODUCT_INVENTORY_TTL_SECONDS)
        return info

    async def get_inventory_history(
        self,
        product_id: str,
        variant_id: str | None = None,
        variant_label: str | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        product = await self.stock_query.load_product(product_id)
        target = resolve_stock_target(
            product_id, product, variant_id=variant_id, variant_label=variant_label
        )
        rows = await self.history_repository.list_for_product(
            product_id, variant_id=target.variant_id, limit=limit, offset=offset
        )
        total = await self.history_repository.count_for_product(
            product_id, variant_id=target.variant_id
        )
        return {
            "history": [history_payload(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def validate_checkout(self, items: list[dict[str, Any]]) -> dict[str, Any]:
        """Reports every line whose requested quantity exceeds available stock."""
        adjustments = []
        for item in items:
            product_id = str(item["productId"])
            requested = int(item["quantity"])
            target = await self.stock_query.resolve_target(
                product_id,
                variant_id=item.get("variantId"),
                variant_label=item.get("variantLabel"),
            )
            snapshot = await self.stock_query.snapshot_for(target)
            if snapshot.available >= requested:
                continue
            adjustments.append(
                {
                    "productId": product_id,
                    "productName": target.product.get("name"),
                    "variantId": target.variant_id,
                    "variantDetails": (
                        format_variant_details(target.variant) if target.variant else None
                    ),
                    "requestedQuantity": requested,
                    "adjustedQuantity": min(requested, snapshot.available),
                    "availableStock": snapshot.available,
                }
            )
        return {"isValid": not adjustments, "adjustments": adjustments}

    async def get_inventory_metrics(self) -> dict[str, Any]:
        return await self.analytics_service.get_inventory_metrics()

    async def get_stock_value(self) -> float:
        return await self.analytics_service.get_stock_value()

    async def get_out_of_stock_products(self) -> list[dict[str, Any]]:
        return await self.analytics_service.get_out_of_stock_products()

    async def get_low_stock_products(self, threshold: int | None = None) -> list[dict[str, Any]]:
        return await self.analytics_service.get_low_stock_products(threshold)

    async def get_inventory_turnover(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return await self.analytics_service.get_inventory_turnover(start, end)
