from __future__ import annotations

import asyncio
import json
from typing import Any

from stockroom.infrastructure.logging import get_logger
from stockroom.infrastructure.persistence_clients import RedisClientManager
from stockroom.store.in_memory import InMemoryStore

logger = get_logger(__name__)

INVENTORY_UPDATES_CHANNEL = "inventory:updates"


class StockEventPublisher:
    """Fire-and-forget stock change notifications.

    ``publish`` schedules delivery and returns immediately; a failed delivery
    is logged and never reaches the mutation that triggered it.
    """

    def __init__(self, *, store: InMemoryStore, redis_manager: RedisClientManager) -> None:
        self.store = store
        self.redis_manager = redis_manager
        self._pending: set[asyncio.Task[None]] = set()

    def publish(
        self,
        *,
        product_id: str,
        variant_id: str | None,
        available_stock: int,
        total_stock: int,
        stock_status: str,
        timestamp: str,
    ) -> None:
        event = {
            "productId": product_id,
            "variantId": variant_id,
            "availableStock": available_stock,
            "totalStock": total_stock,
            "stockStatus": stock_status,
            "timestamp": timestamp,
        }
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Waits for every scheduled delivery; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, event: dict[str, Any]) -> None:
        client = self.redis_manager.client
        try:
            if client is None:
                self.store.stock_events.append(event)
                return
            await client.publish(INVENTORY_UPDATES_CHANNEL, json.dumps(event))
        except Exception as exc:
            logger.warning(
                "inventory.event.publish_failed",
                product_id=event["productId"],
                variant_id=event["variantId"],
                error=str(exc),
            )
