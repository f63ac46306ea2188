from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from typing import Any

from pymongo import DESCENDING

from stockroom.core.utils import as_utc
from stockroom.infrastructure.persistence_clients import MongoClientManager
from stockroom.models.inventory import AdjustmentReason
from stockroom.repositories.transactions import TransactionContext
from stockroom.store.in_memory import InMemoryStore


class HistoryRepository:
    """Append-only audit trail of committed inventory changes."""

    def __init__(
        self,
        *,
        store: InMemoryStore,
        mongo_manager: MongoClientManager,
    ) -> None:
        self.store = store
        self.mongo_manager = mongo_manager

    async def append(
        self, record: dict[str, Any], tx: TransactionContext | None = None
    ) -> dict[str, Any]:
        collection = self._mongo_collection()
        if collection is None:
            self.store.history.append(deepcopy(record))
            if tx is not None:
                history_id = record["historyId"]
                tx.record_undo(lambda: self._discard(history_id))
            return deepcopy(record)
        await collection.insert_one(
            deepcopy(record), session=tx.session if tx is not None else None
        )
        return deepcopy(record)

    async def list_for_product(
        self,
        product_id: str,
        *,
        variant_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        collection = self._mongo_collection()
        if collection is None:
            rows = [
                row
                for row in self.store.history
                if self._matches(row, product_id, variant_id)
            ]
            rows.sort(key=lambda row: as_utc(row["timestamp"]), reverse=True)
            return deepcopy(rows[offset : offset + limit])

        rows = (
            await collection.find(self._query(product_id, variant_id))
            .sort("timestamp", DESCENDING)
            .skip(offset)
            .limit(limit)
            .to_list(None)
        )
        return [self._strip(row) for row in rows]

    async def count_for_product(self, product_id: str, *, variant_id: str | None = None) -> int:
        collection = self._mongo_collection()
        if collection is None:
            return sum(1 for row in self.store.history if self._matches(row, product_id, variant_id))
        return int(await collection.count_documents(self._query(product_id, variant_id)))

    async def last_in_stock(self, product_id: str, variant_id: str | None) -> datetime | None:
        """Timestamp of the latest change that left the variant with stock on hand."""
        collection = self._mongo_collection()
        if collection is None:
            stamps = [
                as_utc(row["timestamp"])
                for row in self.store.history
                if self._matches(row, product_id, variant_id) and int(row.get("newQuantity", 0)) > 0
            ]
            return max(stamps) if stamps else None

        query = self._query(product_id, variant_id)
        query["newQuantity"] = {"$gt": 0}
        row = await collection.find_one(query, sort=[("timestamp", DESCENDING)])
        return as_utc(row["timestamp"]) if row else None

    async def sales_by_variant(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Units sold per ``(productId, variantId)`` with ``start <= timestamp <= end``."""
        collection = self._mongo_collection()
        if collection is None:
            totals: dict[tuple[str, Any], int] = {}
            for row in self.store.history:
                if row.get("reason") != AdjustmentReason.SALE.value:
                    continue
                if not start <= as_utc(row["timestamp"]) <= end:
                    continue
                key = (str(row["productId"]), row.get("variantId"))
                totals[key] = totals.get(key, 0) + abs(int(row.get("adjustment", 0)))
            return [
                {"productId": product_id, "variantId": variant_id, "soldQuantity": sold}
                for (product_id, variant_id), sold in totals.items()
            ]

        pipeline = [
            {
                "$match": {
                    "reason": AdjustmentReason.SALE.value,
                    "timestamp": {"$gte": start, "$lte": end},
                }
            },
            {
                "$group": {
                    "_id": {"productId": "$productId", "variantId": "$variantId"},
                    "soldQuantity": {"$sum": {"$abs": "$adjustment"}},
                }
            },
        ]
        cursor = await collection.aggregate(pipeline)
        return [
            {
                "productId": row["_id"]["productId"],
                "variantId": row["_id"].get("variantId"),
                "soldQuantity": int(row["soldQuantity"]),
            }
            for row in await cursor.to_list(None)
        ]

    def _discard(self, history_id: str) -> None:
        self.store.history = [row for row in self.store.history if row.get("historyId") != history_id]

    @staticmethod
    def _matches(row: dict[str, Any], product_id: str, variant_id: str | None) -> bool:
        if row.get("productId") != product_id:
            return False
        return variant_id is None or row.get("variantId") == variant_id

    @staticmethod
    def _query(product_id: str, variant_id: str | None) -> dict[str, Any]:
        query: dict[str, Any] = {"productId": product_id}
        if variant_id is not None:
            query["variantId"] = variant_id
        return query

    def _strip(self, payload: dict[str, Any]) -> dict[str, Any]:
        payload = dict(payload)
        payload.pop("_id", None)
        return payload

    def _mongo_collection(self) -> Any | None:
        database = self.mongo_manager.database()
        if database is None:
            return None
        return database["inventory_history"]
