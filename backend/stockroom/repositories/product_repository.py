from __future__ import annotations

from copy import deepcopy
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import OperationFailure

from stockroom.core.errors import VersionConflictError
from stockroom.infrastructure.persistence_clients import MongoClientManager
from stockroom.repositories.transactions import TransactionContext
from stockroom.store.in_memory import InMemoryStore

WRITE_CONFLICT = 112


def _session(tx: TransactionContext | None) -> Any | None:
    return tx.session if tx is not None else None


def _is_write_conflict(exc: OperationFailure, tx: TransactionContext | None) -> bool:
    # Inside a transaction the driver owns the retry and needs the raw error.
    return exc.code == WRITE_CONFLICT and tx is None


def _inventory_bounds(delta: int, max_inventory: int) -> tuple[int, int]:
    lower = -delta if delta < 0 else 0
    upper = max_inventory - delta if delta > 0 else max_inventory
    return lower, upper


class ProductRepository:
    """Catalog documents with embedded variants.

    Mongo documents are keyed by ``productId``; callers always see the
    in-memory shape keyed by ``id``.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        mongo_manager: MongoClientManager,
    ) -> None:
        self.store = store
        self.mongo_manager = mongo_manager

    async def get(
        self, product_id: str, tx: TransactionContext | None = None
    ) -> dict[str, Any] | None:
        collection = self._mongo_collection()
        if collection is None:
            product = self.store.products_by_id.get(product_id)
            return deepcopy(product) if product is not None else None
        payload = await collection.find_one({"productId": product_id}, session=_session(tx))
        return self._from_mongo(payload) if payload else None

    async def list_active(self, *, exclude_backorder: bool = False) -> list[dict[str, Any]]:
        collection = self._mongo_collection()
        if collection is None:
            return [
                deepcopy(product)
                for product in self.store.products_by_id.values()
                if not product.get("isDeleted")
                and not (exclude_backorder and product.get("allowBackorder"))
            ]
        query: dict[str, Any] = {"isDeleted": {"$ne": True}}
        if exclude_backorder:
            query["allowBackorder"] = {"$ne": True}
        rows = await collection.find(query).sort("productId", 1).to_list(None)
        return [self._from_mongo(row) for row in rows]

    async def upsert(self, product: dict[str, Any]) -> dict[str, Any]:
        product = deepcopy(product)
        product.setdefault("version", 0)
        collection = self._mongo_collection()
        if collection is None:
            self.store.products_by_id[product["id"]] = deepcopy(product)
            return product
        await collection.update_one(
            {"productId": product["id"]},
            {"$set": {"productId": product["id"], **deepcopy(product)}},
            upsert=True,
        )
        return product

    async def delete(self, product_id: str) -> None:
        collection = self._mongo_collection()
        if collection is None:
            self.store.products_by_id.pop(product_id, None)
            return
        await collection.delete_one({"productId": product_id})

    async def attach_default_variant(
        self,
        product_id: str,
        variant: dict[str, Any],
        *,
        expected_version: int,
        tx: TransactionContext | None = None,
    ) -> bool:
        """Stores ``variant`` as the only variant if nobody changed the product since it was read."""
        collection = self._mongo_collection()
        if collection is None:
            product = self.store.products_by_id.get(product_id)
            if product is None or product.get("variants"):
                return False
            if int(product.get("version", 0) or 0) != expected_version:
                return False
            previous = (product.get("variants"), product.get("version"))
            product["variants"] = [deepcopy(variant)]
            product["version"] = expected_version + 1
            if tx is not None:
                tx.record_undo(lambda: self._restore_variants(product_id, *previous))
            return True

        version_filter: Any = expected_version if expected_version else {"$in": [0, None]}
        try:
            result = await collection.update_one(
                {
                    "productId": product_id,
                    "variants.0": {"$exists": False},
                    "version": version_filter,
                },
                {"$set": {"variants": [deepcopy(variant)]}, "$inc": {"version": 1}},
                session=_session(tx),
            )
        except OperationFailure as exc:
            if _is_write_conflict(exc, tx):
                raise VersionConflictError(product_id) from exc
            raise
        return result.modified_count == 1

    async def apply_inventory_delta(
        self,
        product_id: str,
        delta: int,
        *,
        variant_id: str | None,
        max_inventory: int,
        tx: TransactionContext | None = None,
    ) -> dict[str, Any] | None:
        """Conditionally increments committed inventory of one variant.

        Targets ``variant_id`` or, when it is ``None``, the first variant. The
        write only matches while the result stays within ``[0, max_inventory]``;
        ``None`` means nothing matched.
        """
        lower, upper = _inventory_bounds(delta, max_inventory)
        collection = self._mongo_collection()
        if collection is None:
            return self._apply_delta_in_memory(
                product_id, delta, variant_id=variant_id, lower=lower, upper=upper, tx=tx
            )

        bounds = {"$gte": lower, "$lte": upper}
        if variant_id:
            query: dict[str, Any] = {
                "productId": product_id,
                "isDeleted": {"$ne": True},
                "variants": {"$elemMatch": {"variantId": variant_id, "inventory": bounds}},
            }
            update = {"$inc": {"variants.$.inventory": delta, "version": 1}}
        else:
            query = {
                "productId": product_id,
                "isDeleted": {"$ne": True},
                "variants.0.inventory": bounds,
            }
            update = {"$inc": {"variants.0.inventory": delta, "version": 1}}

        try:
            payload = await collection.find_one_and_update(
                query,
                update,
                return_document=ReturnDocument.AFTER,
                session=_session(tx),
            )
        except OperationFailure as exc:
            if _is_write_conflict(exc, tx):
                raise VersionConflictError(product_id) from exc
            raise
        return self._from_mongo(payload) if payload else None

    async def stock_value(self) -> float:
        collection = self._mongo_collection()
        if collection is None:
            total = 0.0
            for product in self.store.products_by_id.values():
                if product.get("isDeleted"):
                    continue
                for variant in product.get("variants") or []:
                    total += int(variant.get("inventory", 0) or 0) * float(variant.get("price", 0) or 0)
            return total

        pipeline = [
            {"$match": {"isDeleted": {"$ne": True}}},
            {"$unwind": "$variants"},
            {
                "$group": {
                    "_id": None,
                    "totalValue": {
                        "$sum": {"$multiply": ["$variants.inventory", "$variants.price"]}
                    },
                }
            },
        ]
        cursor = await collection.aggregate(pipeline)
        rows = await cursor.to_list(None)
        return float(rows[0]["totalValue"]) if rows else 0.0

    def _apply_delta_in_memory(
        self,
        product_id: str,
        delta: int,
        *,
        variant_id: str | None,
        lower: int,
        upper: int,
        tx: TransactionContext | None,
    ) -> dict[str, Any] | None:
        product = self.store.products_by_id.get(product_id)
        if product is None or product.get("isDeleted"):
            return None
        variants = product.get("variants") or []
        if variant_id:
            variant = next((v for v in variants if v.get("variantId") == variant_id), None)
        else:
            variant = variants[0] if variants else None
        if variant is None:
            return None
        current = int(variant.get("inventory", 0) or 0)
        if not lower <= current <= upper:
            return None

        variant["inventory"] = current + delta
        product["version"] = int(product.get("version", 0) or 0) + 1
        if tx is not None:
            target_id = variant.get("variantId")
            tx.record_undo(lambda: self._revert_delta(product_id, target_id, delta))
        return deepcopy(product)

    def _revert_delta(self, product_id: str, variant_id: Any, delta: int) -> None:
        product = self.store.products_by_id.get(product_id)
        if product is None:
            return
        for variant in product.get("variants") or []:
            if variant.get("variantId") == variant_id:
                variant["inventory"] = int(variant.get("inventory", 0) or 0) - delta
                product["version"] = int(product.get("version", 0) or 0) - 1
                return

    def _restore_variants(self, product_id: str, variants: Any, version: Any) -> None:
        product = self.store.products_by_id.get(product_id)
        if product is None:
            return
        product["variants"] = variants
        product["version"] = version

    def _from_mongo(self, payload: dict[str, Any]) -> dict[str, Any]:
        payload = dict(payload)
        payload.pop("_id", None)
        product_id = payload.pop("productId", None)
        payload.setdefault("id", product_id)
        return payload

    def _mongo_collection(self) -> Any | None:
        database = self.mongo_manager.database()
        if database is None:
            return None
        return database["products"]
