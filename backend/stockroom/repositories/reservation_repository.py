from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from typing import Any

from pymongo import ReturnDocument

from stockroom.core.utils import as_utc, utc_now
from stockroom.infrastructure.persistence_clients import MongoClientManager
from stockroom.repositories.transactions import TransactionContext
from stockroom.store.in_memory import InMemoryStore


def _session(tx: TransactionContext | None) -> Any | None:
    return tx.session if tx is not None else None


class ReservationRepository:
    """Time-bound holds, one document per ``(productId, variantId, sessionId)``.

    A hold counts toward reserved stock only while ``now < expiresAt``; expired
    documents are ignored rather than swept.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        mongo_manager: MongoClientManager,
    ) -> None:
        self.store = store
        self.mongo_manager = mongo_manager

    async def sum_active(
        self,
        product_id: str,
        variant_id: str | None,
        *,
        now: datetime | None = None,
        tx: TransactionContext | None = None,
    ) -> int:
        """Units held by every session; ``variant_id=None`` sums the whole product."""
        now = now or utc_now()
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            return sum(
                int(row.get("quantity", 0))
                for row in self.store.reservations_by_id.values()
                if row.get("productId") == product_id
                and (variant_id is None or row.get("variantId") == variant_id)
                and as_utc(row["expiresAt"]) > now
            )

        match: dict[str, Any] = {"productId": product_id, "expiresAt": {"$gt": now}}
        if variant_id is not None:
            match["variantId"] = variant_id
        pipeline = [
            {"$match": match},
            {"$group": {"_id": None, "totalReserved": {"$sum": "$quantity"}}},
        ]
        cursor = await collection.aggregate(pipeline, session=_session(tx))
        rows = await cursor.to_list(None)
        return int(rows[0]["totalReserved"]) if rows else 0

    async def active_totals_by_variant(
        self, *, now: datetime | None = None
    ) -> dict[tuple[str, str | None], int]:
        now = now or utc_now()
        collection = self._mongo_collection("inventory_reservations")
        totals: dict[tuple[str, str | None], int] = {}
        if collection is None:
            for row in self.store.reservations_by_id.values():
                if as_utc(row["expiresAt"]) <= now:
                    continue
                key = (str(row["productId"]), row.get("variantId"))
                totals[key] = totals.get(key, 0) + int(row.get("quantity", 0))
            return totals

        pipeline = [
            {"$match": {"expiresAt": {"$gt": now}}},
            {
                "$group": {
                    "_id": {"productId": "$productId", "variantId": "$variantId"},
                    "totalReserved": {"$sum": "$quantity"},
                }
            },
        ]
        cursor = await collection.aggregate(pipeline)
        for row in await cursor.to_list(None):
            key = (str(row["_id"]["productId"]), row["_id"].get("variantId"))
            totals[key] = int(row["totalReserved"])
        return totals

    async def get(
        self, reservation_id: str, tx: TransactionContext | None = None
    ) -> dict[str, Any] | None:
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            row = self.store.reservations_by_id.get(reservation_id)
            return deepcopy(row) if row is not None else None
        payload = await collection.find_one(
            {"reservationId": reservation_id}, session=_session(tx)
        )
        return self._strip(payload) if payload else None

    async def find_for_session(
        self,
        product_id: str,
        variant_id: str | None,
        session_id: str,
        tx: TransactionContext | None = None,
    ) -> dict[str, Any] | None:
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            for row in self.store.reservations_by_id.values():
                if (
                    row.get("productId") == product_id
                    and row.get("variantId") == variant_id
                    and row.get("sessionId") == session_id
                ):
                    return deepcopy(row)
            return None
        payload = await collection.find_one(
            {"productId": product_id, "variantId": variant_id, "sessionId": session_id},
            session=_session(tx),
        )
        return self._strip(payload) if payload else None

    async def create(
        self, reservation: dict[str, Any], tx: TransactionContext | None = None
    ) -> dict[str, Any]:
        reservation_id = str(reservation["reservationId"])
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            self.store.reservations_by_id[reservation_id] = deepcopy(reservation)
            if tx is not None:
                tx.record_undo(lambda: self.store.reservations_by_id.pop(reservation_id, None))
            return deepcopy(reservation)
        await collection.insert_one(deepcopy(reservation), session=_session(tx))
        return deepcopy(reservation)

    async def renew(
        self,
        reservation_id: str,
        *,
        quantity: int,
        expires_at: datetime,
        user_id: str | None,
        tx: TransactionContext | None = None,
    ) -> dict[str, Any] | None:
        """Overwrites quantity and expiry of an existing hold in place."""
        now = utc_now()
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            row = self.store.reservations_by_id.get(reservation_id)
            if row is None:
                return None
            previous = deepcopy(row)
            row.update({"quantity": quantity, "expiresAt": expires_at, "updatedAt": now})
            if user_id:
                row["userId"] = user_id
            if tx is not None:
                tx.record_undo(
                    lambda: self.store.reservations_by_id.__setitem__(reservation_id, previous)
                )
            return deepcopy(row)

        changes: dict[str, Any] = {"quantity": quantity, "expiresAt": expires_at, "updatedAt": now}
        if user_id:
            changes["userId"] = user_id
        payload = await collection.find_one_and_update(
            {"reservationId": reservation_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
            session=_session(tx),
        )
        return self._strip(payload) if payload else None

    async def acquire_guard(
        self,
        product_id: str,
        variant_id: str | None,
        tx: TransactionContext,
    ) -> None:
        """Writes the per-target guard document inside ``tx``.

        Two concurrent reserve transactions on one target both write this
        document, so the server rejects one with a write conflict and the
        driver retries it against the committed state. The in-memory store
        already serialises transactions.
        """
        collection = self._mongo_collection("reservation_guards")
        if collection is None:
            return
        await collection.update_one(
            {"productId": product_id, "variantId": variant_id},
            {"$inc": {"sequence": 1}, "$set": {"updatedAt": utc_now()}},
            upsert=True,
            session=_session(tx),
        )

    async def delete(
        self, reservation_id: str, tx: TransactionContext | None = None
    ) -> dict[str, Any] | None:
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            row = self.store.reservations_by_id.pop(reservation_id, None)
            if row is not None and tx is not None:
                tx.record_undo(
                    lambda: self.store.reservations_by_id.__setitem__(reservation_id, row)
                )
            return deepcopy(row) if row is not None else None
        payload = await collection.find_one_and_delete(
            {"reservationId": reservation_id}, session=_session(tx)
        )
        return self._strip(payload) if payload else None

    async def delete_by_session(self, session_id: str) -> list[dict[str, Any]]:
        collection = self._mongo_collection("inventory_reservations")
        if collection is None:
            removed = [
                self.store.reservations_by_id.pop(reservation_id)
                for reservation_id, row in list(self.store.reservations_by_id.items())
                if row.get("sessionId") == session_id
            ]
            return deepcopy(removed)
        rows = await collection.find({"sessionId": session_id}).to_list(None)
        if rows:
            await collection.delete_many(
                {"reservationId": {"$in": [row["reservationId"] for row in rows]}}
            )
        return [self._strip(row) for row in rows]

    def _strip(self, payload: dict[str, Any]) -> dict[str, Any]:
        payload = dict(payload)
        payload.pop("_id", None)
        return payload

    def _mongo_collection(self, name: str) -> Any | None:
        database = self.mongo_manager.database()
        if database is None:
            return None
        return database[name]
