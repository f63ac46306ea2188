from __future__ import annotations

from typing import Any

from pymongo import ASCENDING, DESCENDING

IndexSpec = tuple[list[tuple[str, int]], dict[str, Any]]


MONGO_INDEX_SPECS: dict[str, list[IndexSpec]] = {
    "products": [
        ([("productId", ASCENDING)], {"name": "products_product_id_unique", "unique": True}),
        (
            [("productId", ASCENDING), ("variants.variantId", ASCENDING), ("variants.inventory", ASCENDING)],
            {"name": "products_variant_inventory"},
        ),
        ([("variants.variantId", ASCENDING)], {"name": "products_variant_id"}),
        ([("isDeleted", ASCENDING), ("productId", ASCENDING)], {"name": "products_deleted_product"}),
        (
            [("variants.inventory", ASCENDING), ("lowStockThreshold", ASCENDING)],
            {"name": "products_low_stock"},
        ),
    ],
    "inventory_reservations": [
        ([("reservationId", ASCENDING)], {"name": "reservations_reservation_id_unique", "unique": True}),
        (
            [("productId", ASCENDING), ("variantId", ASCENDING), ("sessionId", ASCENDING)],
            {"name": "reservations_product_variant_session_unique", "unique": True},
        ),
        (
            [("productId", ASCENDING), ("variantId", ASCENDING), ("expiresAt", ASCENDING)],
            {"name": "reservations_product_variant_expires"},
        ),
        ([("sessionId", ASCENDING)], {"name": "reservations_session_id"}),
    ],
    "inventory_history": [
        ([("historyId", ASCENDING)], {"name": "history_history_id_unique", "unique": True}),
        (
            [("productId", ASCENDING), ("variantId", ASCENDING), ("timestamp", DESCENDING)],
            {"name": "history_product_variant_timestamp_desc"},
        ),
        ([("reason", ASCENDING), ("timestamp", DESCENDING)], {"name": "history_reason_timestamp_desc"}),
    ],
    "reservation_guards": [
        (
            [("productId", ASCENDING), ("variantId", ASCENDING)],
            {"name": "reservation_guards_target_unique", "unique": True},
        ),
    ],
}


def resolve_database(client: Any, database_name: str | None = None) -> Any:
    if database_name:
        return client[database_name]
    return client.get_default_database(default="commerce")


async def ensure_mongo_indexes(*, client: Any, database_name: str | None = None) -> dict[str, list[str]]:
    database = resolve_database(client, database_name)
    created: dict[str, list[str]] = {}
    for collection_name, specs in MONGO_INDEX_SPECS.items():
        collection = database[collection_name]
        names: list[str] = []
        for keys, options in specs:
            names.append(str(await collection.create_index(keys, **options)))
        created[collection_name] = names
    return created
