from __future__ import annotations

from datetime import datetime
from typing import Any

from stockroom.core.utils import as_utc, isoformat_or_none, utc_now
from stockroom.models.inventory import DEFAULT_LOW_STOCK_THRESHOLD
from stockroom.repositories.history_repository import HistoryRepository
from stockroom.repositories.product_repository import ProductRepository
from stockroom.repositories.reservation_repository import ReservationRepository
from stockroom.services.cache_service import (
    METRICS_KEY,
    METRICS_TTL_SECONDS,
    OUT_OF_STOCK_KEY,
    OUT_OF_STOCK_TTL_SECONDS,
    CacheService,
)
from stockroom.services.variants import format_variant_details


def _threshold(product: dict[str, Any]) -> int:
    return int(product.get("lowStockThreshold", DEFAULT_LOW_STOCK_THRESHOLD))


class AnalyticsService:
    """Read-only reports over the catalog and both ledgers.

    Rows are one per stored variant of a non-deleted product. Reserved counts
    come from live holds, never from a stored counter.
    """

    def __init__(
        self,
        *,
        product_repository: ProductRepository,
        reservation_repository: ReservationRepository,
        history_repository: HistoryRepository,
        cache_service: CacheService,
    ) -> None:
        self.product_repository = product_repository
        self.reservation_repository = reservation_repository
        self.history_repository = history_repository
        self.cache_service = cache_service

    async def get_inventory_metrics(self) -> dict[str, Any]:
        cached = await self.cache_service.get(METRICS_KEY)
        if cached is not None:
            return cached

        metrics = {
            "totalProducts": 0,
            "totalValue": 0.0,
            "outOfStockCount": 0,
            "lowStockCount": 0,
            "totalReserved": 0,
        }
        for row in await self._variant_rows():
            metrics["totalProducts"] += 1
            metrics["totalValue"] += row["inventory"] * row["price"]
            metrics["totalReserved"] += row["reserved"]
            if row["availableStock"] <= 0:
                metrics["outOfStockCount"] += 1
            elif row["availableStock"] <= row["lowStockThreshold"]:
                metrics["lowStockCount"] += 1

        await self.cache_service.set(METRICS_KEY, metrics, METRICS_TTL_SECONDS)
        return metrics

    async def get_stock_value(self) -> float:
        return await self.product_repository.stock_value()

    async def get_out_of_stock_products(self) -> list[dict[str, Any]]:
        cached = await self.cache_service.get(OUT_OF_STOCK_KEY)
        if cached is not None:
            return cached

        items: list[dict[str, Any]] = []
        for row in await self._variant_rows(exclude_backorder=True):
            if row["availableStock"] > 0:
                continue
            last_in_stock = await self.history_repository.last_in_stock(
                row["productId"], row["variantId"]
            )
            items.append(
                {
                    "productId": row["productId"],
                    "productName": row["productName"],
                    "variantId": row["variantId"],
                    "variantDetails": row["variantDetails"],
                    "lastInStock": isoformat_or_none(last_in_stock),
                }
            )

        await self.cache_service.set(OUT_OF_STOCK_KEY, items, OUT_OF_STOCK_TTL_SECONDS)
        return items

    async def get_low_stock_products(self, threshold: int | None = None) -> list[dict[str, Any]]:
        items = []
        for row in await self._variant_rows():
            limit = row["lowStockThreshold"] if threshold is None else threshold
            if 0 < row["availableStock"] <= limit:
                items.append(
                    {
                        "productId": row["productId"],
                        "productName": row["productName"],
                        "variantId": row["variantId"],
                        "variantDetails": row["variantDetails"],
                        "currentStock": row["inventory"],
                        "reservedStock": row["reserved"],
                        "availableStock": row["availableStock"],
                        "lowStockThreshold": limit,
                    }
                )
        items.sort(key=lambda item: (item["availableStock"], item["productId"]))
        return items

    async def get_inventory_turnover(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        start, end = as_utc(start), as_utc(end)
        products: dict[str, dict[str, Any]] = {}
        rows = []
        for sale in await self.history_repository.sales_by_variant(start, end):
            product_id = str(sale["productId"])
            if product_id not in products:
                products[product_id] = await self.product_repository.get(product_id) or {}
            product = products[product_id]
            variant = next(
                (
                    v
                    for v in product.get("variants") or []
                    if v.get("variantId") == sale["variantId"]
                ),
                None,
            )
            stock = int(variant.get("inventory", 0) or 0) if variant else 0
            sold = int(sale["soldQuantity"])
            rows.append(
                {
                    "productId": product_id,
                    "productName": product.get("name"),
                    "variantId": sale["variantId"],
                    "soldQuantity": sold,
                    "averageStock": stock,
                    "turnoverRate": sold / stock if stock > 0 else 0,
                    "period": {"start": start.isoformat(), "end": end.isoformat()},
                }
            )
        rows.sort(key=lambda row: row["turnoverRate"], reverse=True)
        return rows

    async def _variant_rows(self, *, exclude_backorder: bool = False) -> list[dict[str, Any]]:
        products = await self.product_repository.list_active(exclude_backorder=exclude_backorder)
        reserved = await self.reservation_repository.active_totals_by_variant(now=utc_now())
        rows = []
        for product in products:
            product_id = str(product["id"])
            for variant in product.get("variants") or []:
                variant_id = variant.get("variantId")
                inventory = int(variant.get("inventory", 0) or 0)
                held = reserved.get((product_id, variant_id), 0)
                rows.append(
                    {
                        "productId": product_id,
                        "productName": product.get("name"),
                        "variantId": variant_id,
                        "variantDetails": format_variant_details(variant),
                        "inventory": inventory,
                        "price": float(variant.get("price", 0) or 0),
                        "reserved": held,
                        "availableStock": inventory - held,
                        "lowStockThreshold": _threshold(product),
                    }
                )
        return rows
